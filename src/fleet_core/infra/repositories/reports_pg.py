from __future__ import annotations
from typing import List, Optional
from datetime import datetime
from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, Field, select
from fleet_core.domain.models import Report
from fleet_core.infra.db.postgres import session
from .base import ReportRepo


class ReportRow(SQLModel, table=True):
    id: str = Field(primary_key=True)
    mission_id: str = Field(index=True)
    drone_id: str
    pilot_id: str | None = None
    duration: int
    distance_flown: float
    area_covered: float
    average_speed: float
    average_altitude: float
    battery_used: float
    images_captured: int
    status: str
    notes: str = ""
    generated_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))


class ReportsPg(ReportRepo):
    async def create(self, r: Report) -> Report:
        async with session() as s:
            s.add(ReportRow(**r.model_dump()))
            await s.commit()
        return r

    async def get(self, report_id: str) -> Optional[Report]:
        async with session() as s:
            row = await s.get(ReportRow, report_id)
            return Report.model_validate(row.model_dump()) if row else None

    async def list_by_mission(self, mission_id: str) -> List[Report]:
        async with session() as s:
            res = await s.exec(select(ReportRow).where(ReportRow.mission_id == mission_id))
            return [Report.model_validate(row.model_dump()) for row in res.all()]
