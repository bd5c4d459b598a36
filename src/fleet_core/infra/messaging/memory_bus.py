from __future__ import annotations
import asyncio
import inspect
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from .bus import EventBus, Handler, Message, topic_matches

log = logging.getLogger("memory-bus")


class MemoryBus(EventBus):
    """
    Шина внутри процесса: та же семантика топиков, что у MqttBus,
    плюс журнал опубликованных сообщений (для тестов и профиля mem).
    """

    def __init__(self, history_limit: int = 10_000) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = threading.RLock()
        self._history_limit = history_limit
        self.published: List[Message] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def stop(self) -> None:
        with self._lock:
            self._handlers.clear()

    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False) -> None:
        m = Message(topic=topic, payload=payload, qos=qos, retain=retain, ts=time.time())
        with self._lock:
            self.published.append(m)
            if len(self.published) > self._history_limit:
                del self.published[: len(self.published) - self._history_limit]
            handlers = [h for pattern, hs in self._handlers.items()
                        if topic_matches(pattern, topic) for h in hs]

        for h in handlers:
            try:
                if inspect.iscoroutinefunction(h):
                    if self._loop is None:
                        log.warning("no event loop for async handler on %s", topic)
                        continue
                    asyncio.run_coroutine_threadsafe(h(m), self._loop)
                else:
                    h(m)
            except Exception:
                log.exception("handler error for topic=%s", topic)

    def subscribe(self, topic: str, handler: Handler, qos: int = 1) -> None:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Optional[Handler] = None) -> None:
        with self._lock:
            if handler is None:
                self._handlers.pop(topic, None)
                return
            lst = self._handlers.get(topic, [])
            if handler in lst:
                lst.remove(handler)
            if not lst:
                self._handlers.pop(topic, None)

    def messages(self, pattern: str = "#") -> List[Message]:
        with self._lock:
            return [m for m in self.published if topic_matches(pattern, m.topic)]
