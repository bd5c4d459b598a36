from __future__ import annotations
from enum import Enum
from typing import Optional, List, Literal, Tuple
from datetime import datetime, timezone
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Drones ----------
class DroneStatus(str, Enum):
    AVAILABLE = "available"
    IN_MISSION = "in-mission"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"
    CHARGING = "charging"


class Location(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    timestamp: Optional[datetime] = None


class Drone(BaseModel):
    id: str = Field(default_factory=lambda: f"drn_{uuid4().hex[:8]}")
    name: Optional[str] = None
    status: DroneStatus = DroneStatus.AVAILABLE
    battery_level: float = Field(default=100.0, ge=0, le=100)
    current_location: Optional[Location] = None


# ---------- Missions ----------
class MissionStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class Waypoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: float = Field(default=60.0, ge=0)
    order: int = Field(default=1, ge=1)
    action: Literal["hover", "photo", "video", "scan"] = "photo"
    duration: float = 0.0  # сек


class Mission(BaseModel):
    """
    Миссия облёта: упорядоченный маршрут внутри полигона.
    polygon хранится как кольцо пар [lon, lat].
    """
    id: str = Field(default_factory=lambda: f"mis_{uuid4().hex[:8]}")
    title: str = ""
    drone_id: Optional[str] = None
    pilot_id: Optional[str] = None

    waypoints: List[Waypoint] = Field(default_factory=list)
    polygon: List[Tuple[float, float]] = Field(default_factory=list)
    speed: float = 10.0           # м/с
    altitude: float = 60.0        # м
    estimated_duration: float = 30.0  # мин

    # прогресс исполнения
    status: MissionStatus = MissionStatus.PLANNED
    current_waypoint: int = 0
    progress: float = Field(default=0.0, ge=0, le=100)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)

    def ordered_waypoints(self) -> List[Waypoint]:
        return sorted(self.waypoints, key=lambda w: w.order)


# ---------- Reports ----------
class Report(BaseModel):
    id: str = Field(default_factory=lambda: f"rep_{uuid4().hex[:8]}")
    mission_id: str
    drone_id: str
    pilot_id: Optional[str] = None
    duration: int                 # мин
    distance_flown: float         # км
    area_covered: float           # градусы² (плоское приближение)
    average_speed: float
    average_altitude: float
    battery_used: float
    images_captured: int
    status: Literal["success", "partial", "failed"] = "success"
    notes: str = ""
    generated_at: datetime = Field(default_factory=utcnow)


# ---------- Telemetry events ----------
class _Event(BaseModel):
    """Событие для клиентов: поля сериализуются в camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_datetime="iso8601",
    )

    def payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Position(_Event):
    latitude: float
    longitude: float
    altitude: float


class TelemetrySample(_Event):
    mission_id: str
    drone_id: str
    position: Position
    speed: float
    battery_level: float
    progress: float
    current_waypoint: int
    total_waypoints: int
    eta: int
    timestamp: datetime


class MissionCompleted(_Event):
    mission_id: str
    report_id: str
