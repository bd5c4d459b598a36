"""
Рассылка событий миссий по websocket-комнатам.

Клиент сам входит в комнату миссии (joinMission) и получает только её
события. publish() можно звать из любого потока: отправка планируется
в петлю приложения.
"""
from __future__ import annotations
import asyncio
import json
import logging
import threading
from typing import Any, Dict, Optional, Protocol, Set

from . import topics
from .bus import EventBus, Handler

log = logging.getLogger("room-hub")


class Client(Protocol):
    async def send_text(self, data: str) -> None: ...


class RoomHub(EventBus):
    def __init__(self) -> None:
        self._rooms: Dict[str, Set[Client]] = {}
        self._lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Task] = set()

    # ---------- lifecycle ----------
    def start(self) -> None:
        self._loop = asyncio.get_running_loop()

    def stop(self) -> None:
        with self._lock:
            self._rooms.clear()

    # ---------- rooms ----------
    def join(self, mission_id: str, client: Client) -> None:
        with self._lock:
            self._rooms.setdefault(topics.mission_room(mission_id), set()).add(client)
        log.info("client joined %s", topics.mission_room(mission_id))

    def leave(self, mission_id: str, client: Client) -> None:
        room = topics.mission_room(mission_id)
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(client)
            if not members:
                self._rooms.pop(room, None)
        log.info("client left %s", room)

    def leave_all(self, client: Client) -> None:
        with self._lock:
            for room in list(self._rooms):
                self._rooms[room].discard(client)
                if not self._rooms[room]:
                    self._rooms.pop(room)

    def members(self, mission_id: str) -> Set[Client]:
        with self._lock:
            return set(self._rooms.get(topics.mission_room(mission_id), set()))

    # ---------- EventBus ----------
    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False) -> None:
        parsed = topics.parse_mission_topic(topic)
        if parsed is None:
            log.debug("topic %s is not a mission topic, dropped", topic)
            return
        mission_id, event = parsed
        clients = self.members(mission_id)
        if not clients:
            return
        text = json.dumps({
            "event": topics.CLIENT_EVENTS.get(event, event),
            "missionId": mission_id,
            "data": payload,
        }, default=str)

        if self._loop is None:
            log.warning("room hub not started; dropping %s", topic)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            task = self._loop.create_task(self._send(mission_id, clients, text))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self._send(mission_id, clients, text), self._loop)

    async def _send(self, mission_id: str, clients: Set[Client], text: str) -> None:
        for c in clients:
            try:
                await c.send_text(text)
            except Exception as e:
                log.warning("dropping client from %s: %s", topics.mission_room(mission_id), e)
                self.leave(mission_id, c)

    def subscribe(self, topic: str, handler: Handler, qos: int = 1) -> None:
        """Комнатами управляют клиенты (join/leave); подписка шины игнорируется."""
        log.debug("subscribe(%s) ignored: room hub has no topic handlers", topic)

    def unsubscribe(self, topic: str, handler: Optional[Handler] = None) -> None:
        """Подписок нет, отписываться не от чего."""
        log.debug("unsubscribe(%s) ignored: room hub has no topic handlers", topic)
