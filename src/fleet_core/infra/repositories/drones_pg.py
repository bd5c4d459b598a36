from __future__ import annotations
from typing import Any, List, Optional
from datetime import datetime, timezone
import logging
from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field, select
from fleet_core.domain.models import Drone, DroneStatus, Location
from fleet_core.infra.db.postgres import session
from .base import DroneRepo

logger = logging.getLogger("drones-pg")


class DroneRow(SQLModel, table=True):
    """ORM-модель для таблицы дронов (PostgreSQL)."""
    id: str = Field(primary_key=True)
    name: str | None = None
    status: str
    battery_level: float = 100.0
    lat: float | None = None
    lon: float | None = None
    alt: float | None = None
    location_ts: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )


def _to_domain(r: DroneRow) -> Drone:
    location = None
    if r.lat is not None and r.lon is not None:
        location = Location(latitude=r.lat, longitude=r.lon, altitude=r.alt, timestamp=r.location_ts)
    return Drone(
        id=r.id,
        name=r.name,
        status=DroneStatus(r.status),
        battery_level=r.battery_level,
        current_location=location,
    )


def _apply(r: DroneRow, d: Drone) -> None:
    r.name = d.name
    r.status = d.status.value
    r.battery_level = d.battery_level
    loc = d.current_location
    r.lat = loc.latitude if loc else None
    r.lon = loc.longitude if loc else None
    r.alt = loc.altitude if loc else None
    r.location_ts = loc.timestamp if loc else None
    r.updated_at = datetime.now(timezone.utc)


class DronesPg(DroneRepo):
    """PostgreSQL-реестр дронов."""

    async def add(self, d: Drone) -> Drone:
        row = DroneRow(id=d.id, status=d.status.value)
        _apply(row, d)
        async with session() as s:
            await s.merge(row)
            await s.commit()
        logger.info("Added drone %s (%s)", d.id, d.status.value)
        return d

    async def get(self, drone_id: str) -> Optional[Drone]:
        async with session() as s:
            r = await s.get(DroneRow, drone_id)
            return _to_domain(r) if r else None

    async def list_all(self) -> List[Drone]:
        async with session() as s:
            res = await s.exec(select(DroneRow))
            return [_to_domain(r) for r in res.all()]

    async def list_available(self) -> List[Drone]:
        async with session() as s:
            res = await s.exec(select(DroneRow).where(DroneRow.status == DroneStatus.AVAILABLE.value))
            return [_to_domain(r) for r in res.all()]

    async def set_status(self, drone_id: str, status: DroneStatus) -> None:
        await self.update(drone_id, status=status)

    async def update(self, drone_id: str, **changes: Any) -> Optional[Drone]:
        async with session() as s:
            r = await s.get(DroneRow, drone_id)
            if r is None:
                logger.warning("Drone %s not found, update skipped", drone_id)
                return None
            updated = Drone.model_validate({**_to_domain(r).model_dump(), **changes})
            _apply(r, updated)
            s.add(r)
            await s.commit()
            return updated
