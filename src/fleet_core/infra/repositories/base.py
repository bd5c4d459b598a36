from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, List, Optional
from fleet_core.domain.models import Drone, DroneStatus, Mission, Report


class DroneRepo(ABC):
    @abstractmethod
    async def add(self, d: Drone) -> Drone: ...

    @abstractmethod
    async def get(self, drone_id: str) -> Optional[Drone]: ...

    @abstractmethod
    async def list_all(self) -> List[Drone]: ...

    @abstractmethod
    async def list_available(self) -> List[Drone]: ...

    @abstractmethod
    async def set_status(self, drone_id: str, status: DroneStatus) -> None: ...

    @abstractmethod
    async def update(self, drone_id: str, **changes: Any) -> Optional[Drone]:
        """Частичное обновление записи; None, если записи нет."""


class MissionRepo(ABC):
    @abstractmethod
    async def create(self, m: Mission) -> Mission: ...

    @abstractmethod
    async def get(self, mission_id: str) -> Optional[Mission]: ...

    @abstractmethod
    async def update(self, mission_id: str, **changes: Any) -> Optional[Mission]: ...

    @abstractmethod
    async def list_active(self) -> List[Mission]: ...


class ReportRepo(ABC):
    @abstractmethod
    async def create(self, r: Report) -> Report: ...

    @abstractmethod
    async def get(self, report_id: str) -> Optional[Report]: ...

    @abstractmethod
    async def list_by_mission(self, mission_id: str) -> List[Report]: ...
