from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional
from fleet_core.domain.models import Mission, MissionStatus
from .base import MissionRepo


class MissionsMem(MissionRepo):
    def __init__(self) -> None:
        self._store: Dict[str, Mission] = {}
        self._lock = asyncio.Lock()

    async def create(self, m: Mission) -> Mission:
        async with self._lock:
            self._store[m.id] = m.model_copy(deep=True)
        return m

    async def get(self, mission_id: str) -> Optional[Mission]:
        m = self._store.get(mission_id)
        return m.model_copy(deep=True) if m else None

    async def update(self, mission_id: str, **changes: Any) -> Optional[Mission]:
        async with self._lock:
            current = self._store.get(mission_id)
            if current is None:
                return None
            updated = Mission.model_validate({**current.model_dump(), **changes})
            self._store[mission_id] = updated
            return updated.model_copy(deep=True)

    async def list_active(self) -> List[Mission]:
        return [m.model_copy(deep=True) for m in self._store.values() if m.status not in
                {MissionStatus.COMPLETED, MissionStatus.ABORTED, MissionStatus.FAILED}]
