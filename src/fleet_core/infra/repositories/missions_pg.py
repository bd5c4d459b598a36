from __future__ import annotations
from typing import Any, List, Optional
from datetime import datetime
from sqlalchemy import JSON, Column, DateTime, delete
from sqlmodel import SQLModel, Field, select
from fleet_core.domain.models import Mission, MissionStatus, Waypoint
from fleet_core.infra.db.postgres import session
from .base import MissionRepo


class MissionRow(SQLModel, table=True):
    id: str = Field(primary_key=True)
    title: str = ""
    drone_id: str | None = None
    pilot_id: str | None = None
    polygon: list = Field(default_factory=list, sa_column=Column(JSON))
    speed: float
    altitude: float
    estimated_duration: float
    status: str
    current_waypoint: int = 0
    progress: float = 0.0
    start_time: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    end_time: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))


class WaypointRow(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    mission_id: str = Field(foreign_key="missionrow.id", index=True)
    order: int
    lat: float
    lon: float
    alt: float
    action: str = "photo"
    duration: float = 0.0


_SCALARS = (
    "title", "drone_id", "pilot_id", "speed", "altitude", "estimated_duration",
    "current_waypoint", "progress", "start_time", "end_time", "created_at",
)


def _to_domain(m: MissionRow, wps: List[WaypointRow]) -> Mission:
    return Mission(
        id=m.id,
        status=MissionStatus(m.status),
        polygon=[tuple(p) for p in (m.polygon or [])],
        waypoints=[
            Waypoint(latitude=w.lat, longitude=w.lon, altitude=w.alt, order=w.order,
                     action=w.action, duration=w.duration)
            for w in sorted(wps, key=lambda x: x.order)
        ],
        **{k: getattr(m, k) for k in _SCALARS},
    )


def _apply(mr: MissionRow, m: Mission) -> None:
    for k in _SCALARS:
        setattr(mr, k, getattr(m, k))
    mr.status = m.status.value
    mr.polygon = [list(p) for p in m.polygon]


def _waypoint_rows(m: Mission) -> List[WaypointRow]:
    return [
        WaypointRow(mission_id=m.id, order=w.order, lat=w.latitude, lon=w.longitude,
                    alt=w.altitude, action=w.action, duration=w.duration)
        for w in m.waypoints
    ]


class MissionsPg(MissionRepo):
    async def create(self, m: Mission) -> Mission:
        mr = MissionRow(id=m.id, speed=m.speed, altitude=m.altitude,
                        estimated_duration=m.estimated_duration,
                        status=m.status.value, created_at=m.created_at)
        _apply(mr, m)
        async with session() as s:
            s.add(mr)
            for w in _waypoint_rows(m):
                s.add(w)
            await s.commit()
        return m

    async def get(self, mission_id: str) -> Optional[Mission]:
        async with session() as s:
            mr = await s.get(MissionRow, mission_id)
            if not mr:
                return None
            res_wp = await s.exec(select(WaypointRow).where(WaypointRow.mission_id == mission_id))
            return _to_domain(mr, res_wp.all())

    async def update(self, mission_id: str, **changes: Any) -> Optional[Mission]:
        async with session() as s:
            mr = await s.get(MissionRow, mission_id)
            if not mr:
                return None
            wps = (await s.exec(select(WaypointRow).where(WaypointRow.mission_id == mission_id))).all()
            updated = Mission.model_validate({**_to_domain(mr, wps).model_dump(), **changes})
            _apply(mr, updated)
            s.add(mr)
            if "waypoints" in changes:
                # маршрут перезаписываем целиком
                await s.exec(delete(WaypointRow).where(WaypointRow.mission_id == mission_id))
                for w in _waypoint_rows(updated):
                    s.add(w)
            await s.commit()
            return updated

    async def list_active(self) -> List[Mission]:
        async with session() as s:
            res = await s.exec(select(MissionRow).where(MissionRow.status.not_in(
                [MissionStatus.COMPLETED.value, MissionStatus.ABORTED.value, MissionStatus.FAILED.value]
            )))
            missions: List[Mission] = []
            for r in res.all():
                wps = (await s.exec(select(WaypointRow).where(WaypointRow.mission_id == r.id))).all()
                missions.append(_to_domain(r, wps))
            return missions
