from __future__ import annotations
import asyncio
from typing import Dict, List, Optional
from fleet_core.domain.models import Report
from .base import ReportRepo


class ReportsMem(ReportRepo):
    def __init__(self) -> None:
        self._store: Dict[str, Report] = {}
        self._lock = asyncio.Lock()

    async def create(self, r: Report) -> Report:
        async with self._lock:
            self._store[r.id] = r.model_copy(deep=True)
        return r

    async def get(self, report_id: str) -> Optional[Report]:
        r = self._store.get(report_id)
        return r.model_copy(deep=True) if r else None

    async def list_by_mission(self, mission_id: str) -> List[Report]:
        return [r.model_copy(deep=True) for r in self._store.values() if r.mission_id == mission_id]
