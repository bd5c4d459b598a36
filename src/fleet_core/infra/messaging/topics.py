"""
topics.py — централизованное определение топиков и комнат миссий.
"""
from __future__ import annotations
from typing import Optional, Tuple

TELEMETRY = "telemetry"
COMPLETED = "completed"

# события топика -> имя события для клиентов
CLIENT_EVENTS = {
    TELEMETRY: "telemetry",
    COMPLETED: "missionCompleted",
}


# ==== События миссий ====
def mission_telemetry(mission_id: str) -> str:
    return f"mission/{mission_id}/{TELEMETRY}"


def mission_completed(mission_id: str) -> str:
    return f"mission/{mission_id}/{COMPLETED}"


def mission_room(mission_id: str) -> str:
    return f"mission-{mission_id}"


def parse_mission_topic(topic: str) -> Optional[Tuple[str, str]]:
    """mission/<id>/<event> -> (id, event); None для чужих топиков."""
    parts = topic.split("/")
    if len(parts) != 3 or parts[0] != "mission" or not parts[1]:
        return None
    return parts[1], parts[2]


# ==== Шаблоны подписки (wildcards) ====
MISSION_TELEMETRY_ALL = "mission/+/telemetry"
MISSION_EVENTS_ALL = "mission/+/+"
