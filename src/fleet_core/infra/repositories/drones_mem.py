from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional
from fleet_core.domain.models import Drone, DroneStatus
from .base import DroneRepo


class DronesMem(DroneRepo):
    def __init__(self) -> None:
        self._store: Dict[str, Drone] = {}
        self._lock = asyncio.Lock()

    async def add(self, d: Drone) -> Drone:
        async with self._lock:
            self._store[d.id] = d.model_copy(deep=True)
        return d

    async def get(self, drone_id: str) -> Optional[Drone]:
        d = self._store.get(drone_id)
        return d.model_copy(deep=True) if d else None

    async def list_all(self) -> List[Drone]:
        return [d.model_copy(deep=True) for d in self._store.values()]

    async def list_available(self) -> List[Drone]:
        return [d.model_copy(deep=True) for d in self._store.values()
                if d.status == DroneStatus.AVAILABLE]

    async def set_status(self, drone_id: str, status: DroneStatus) -> None:
        await self.update(drone_id, status=status)

    async def update(self, drone_id: str, **changes: Any) -> Optional[Drone]:
        async with self._lock:
            current = self._store.get(drone_id)
            if current is None:
                return None
            # валидируем заново, чтобы словари превратились в модели
            updated = Drone.model_validate({**current.model_dump(), **changes})
            self._store[drone_id] = updated
            return updated.model_copy(deep=True)
