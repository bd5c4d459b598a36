from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Awaitable, Protocol, Optional, Union, Dict, Any

JSON = Dict[str, Any]
Handler = Union[Callable[["Message"], None], Callable[["Message"], Awaitable[None]]]


@dataclass
class Message:
    topic: str
    payload: Any            # dict/str/bytes — шины приводят к dict если JSON
    qos: int
    retain: bool
    ts: float               # time.time()


class EventBus(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False) -> None: ...
    def subscribe(self, topic: str, handler: Handler, qos: int = 1) -> None: ...
    def unsubscribe(self, topic: str, handler: Optional[Handler] = None) -> None: ...


def topic_matches(pattern: str, topic: str) -> bool:
    """MQTT-сопоставление: '+' — один уровень, '#' — хвост."""
    p_parts = pattern.split("/")
    t_parts = topic.split("/")
    for i, p in enumerate(p_parts):
        if p == "#":
            return True
        if i >= len(t_parts):
            return False
        if p != "+" and p != t_parts[i]:
            return False
    return len(p_parts) == len(t_parts)
