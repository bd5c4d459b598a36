from __future__ import annotations
import asyncio
import inspect
import json
import logging
import ssl
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from .bus import EventBus, Handler, Message, topic_matches

log = logging.getLogger("mqtt-bus")


def _encode(payload: Any) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


def _decode(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return bytes(raw)


class MqttBus(EventBus):
    """
    Обёртка над paho-mqtt для рассылки событий миссий:
    - автопереподключение (paho loop_start)
    - подписка/публикация с QoS, переподписка после reconnect
    - диспатч хендлеров по wildcard-шаблонам; async и sync функции
    - payload автоматически парсится из JSON (если это JSON)
    """

    def __init__(
        self,
        broker_url: str,
        client_id: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 30,
        clean_session: bool = True,
    ) -> None:
        self._url = urlparse(broker_url)
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id or f"fleet-core-{int(time.time()*1000)}",
            clean_session=clean_session,
        )
        username = username or self._url.username
        if username:
            self._client.username_pw_set(username, password or self._url.password or "")
        if self._url.scheme in ("mqtts", "ssl", "tls"):
            self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        self._keepalive = keepalive

        # runtime
        self._connected = threading.Event()
        self._stop_evt = threading.Event()
        self._handlers: Dict[str, List[Handler]] = {}  # pattern -> [handlers]
        self._lock = threading.RLock()

        # отдельная петля для корутинных обработчиков
        self._async_loop = asyncio.new_event_loop()
        self._async_thread = threading.Thread(
            target=self._async_loop.run_forever, name="mqtt-async-loop", daemon=True
        )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    # ---------- lifecycle ----------
    def start(self) -> None:
        host = self._url.hostname or "127.0.0.1"
        port = self._url.port or (8883 if self._url.scheme in ("mqtts", "ssl", "tls") else 1883)
        log.info("connecting to %s:%s", host, port)

        try:
            # цикл paho должен жить ДО подключения
            self._client.loop_start()
            self._client.connect(host, port, keepalive=self._keepalive)
            if not self._connected.wait(timeout=5):
                log.error("could not connect to MQTT broker %s:%s", host, port)
            self._async_thread.start()
        except OSError as e:
            log.error("MQTT connection failed: %s", e)

    def stop(self) -> None:
        self._stop_evt.set()
        try:
            self._client.disconnect()
            self._client.loop_stop()
        finally:
            if self._async_loop.is_running():
                self._async_loop.call_soon_threadsafe(self._async_loop.stop)

    # ---------- pub/sub API ----------
    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False) -> None:
        if not self._connected.is_set():
            log.warning("publish while disconnected; message will still be queued by paho")
        res = self._client.publish(topic, _encode(payload), qos=qos, retain=retain)
        if res.rc != mqtt.MQTT_ERR_SUCCESS:
            log.error("publish error rc=%s topic=%s", res.rc, topic)

    def subscribe(self, topic: str, handler: Handler, qos: int = 1) -> None:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)
        if self._connected.is_set():
            self._client.subscribe(topic, qos=qos)
            log.info("subscribed: %s (qos=%s)", topic, qos)

    def unsubscribe(self, topic: str, handler: Optional[Handler] = None) -> None:
        with self._lock:
            if handler is None:
                self._handlers.pop(topic, None)
            else:
                lst = self._handlers.get(topic, [])
                if handler in lst:
                    lst.remove(handler)
                if not lst:
                    self._handlers.pop(topic, None)
            still_used = topic in self._handlers
        if self._connected.is_set() and not still_used:
            self._client.unsubscribe(topic)
            log.info("unsubscribed: %s", topic)

    # ---------- callbacks ----------
    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties) -> None:
        if reason_code == 0:
            log.info("MQTT connected")
            self._connected.set()
            with self._lock:
                for topic in self._handlers.keys():
                    client.subscribe(topic, qos=1)
                    log.debug("re-subscribed: %s", topic)
        else:
            log.error("MQTT connect failed rc=%s", reason_code)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._connected.clear()
        if not self._stop_evt.is_set():
            log.warning("MQTT disconnected reason_code=%s; paho will reconnect", reason_code)

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        m = Message(
            topic=msg.topic,
            payload=_decode(msg.payload),
            qos=msg.qos,
            retain=msg.retain,
            ts=time.time(),
        )
        with self._lock:
            handlers = [h for pattern, hs in self._handlers.items()
                        if topic_matches(pattern, msg.topic) for h in hs]

        for h in handlers:
            try:
                if inspect.iscoroutinefunction(h):
                    asyncio.run_coroutine_threadsafe(h(m), self._async_loop)
                else:
                    h(m)
            except Exception:
                log.exception("handler error for topic=%s", msg.topic)
