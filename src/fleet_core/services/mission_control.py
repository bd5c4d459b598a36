from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from fleet_core.domain.models import DroneStatus, Mission, MissionStatus, utcnow
from fleet_core.infra.repositories.base import DroneRepo, MissionRepo
from fleet_core.workers.telemetry import TelemetryScheduler

log = logging.getLogger("mission-control")

ACTIONS = ("start", "pause", "resume", "abort", "complete")

# action -> статусы, из которых оно разрешено
ALLOWED_FROM: Dict[str, FrozenSet[MissionStatus]] = {
    "start": frozenset({MissionStatus.PLANNED}),
    "pause": frozenset({MissionStatus.IN_PROGRESS}),
    "resume": frozenset({MissionStatus.PAUSED}),
    "abort": frozenset({MissionStatus.PLANNED, MissionStatus.IN_PROGRESS, MissionStatus.PAUSED}),
    "complete": frozenset({MissionStatus.IN_PROGRESS}),
}

_REJECT_REASON = {
    "start": "Mission can only be started from planned status",
    "pause": "Mission can only be paused when in progress",
    "resume": "Mission can only be resumed when paused",
    "abort": "Mission can only be aborted when planned, in progress, or paused",
    "complete": "Mission can only be completed when in progress",
}


class MissionNotFound(ValueError):
    pass


class InvalidMissionAction(ValueError):
    pass


class DroneUnavailable(ValueError):
    pass


class MissionControl:
    """Переходы статуса миссии и управление сессиями телеметрии."""

    def __init__(
        self,
        missions: MissionRepo,
        drones: DroneRepo,
        scheduler: TelemetryScheduler,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.missions = missions
        self.drones = drones
        self.scheduler = scheduler
        self._clock = clock or utcnow

    async def create(self, **fields: Any) -> Mission:
        """
        Новая миссия в статусе planned. Дрон должен существовать и быть available,
        после создания он переводится в in-mission.
        Без estimated_duration длительность оценивается как 2 мин на вершину полигона.
        """
        drone_id = fields.get("drone_id")
        drone = await self.drones.get(drone_id) if drone_id else None
        if drone is None:
            raise DroneUnavailable("Invalid or inactive drone selected")
        if drone.status != DroneStatus.AVAILABLE:
            raise DroneUnavailable("Selected drone is not available")

        if fields.get("estimated_duration") is None:
            fields["estimated_duration"] = float(math.ceil(len(fields.get("polygon") or []) * 2))
        fields.update(status=MissionStatus.PLANNED, current_waypoint=0, progress=0.0)
        mission = await self.missions.create(Mission(**fields))
        await self.drones.set_status(drone.id, DroneStatus.IN_MISSION)
        log.info("mission %s created for drone %s (%d waypoints)",
                 mission.id, drone.id, len(mission.waypoints))
        return mission

    async def resume_active(self) -> List[str]:
        """Поднять сессии для миссий in-progress (после рестарта сервиса)."""
        resumed: List[str] = []
        for mission in await self.missions.list_active():
            if mission.status != MissionStatus.IN_PROGRESS:
                continue
            await self.scheduler.start(mission.id)
            if self.scheduler.is_active(mission.id):
                resumed.append(mission.id)
        if resumed:
            log.info("resumed telemetry for %d missions", len(resumed))
        return resumed

    async def apply(self, mission_id: str, action: str) -> Mission:
        if action not in ACTIONS:
            raise InvalidMissionAction(
                "Invalid action. Must be start, pause, resume, abort, or complete")

        mission = await self.missions.get(mission_id)
        if mission is None:
            raise MissionNotFound("Mission not found")
        if mission.status not in ALLOWED_FROM[action]:
            raise InvalidMissionAction(_REJECT_REASON[action])

        handler = getattr(self, f"_{action}")
        updated = await handler(mission)
        log.info("mission %s: %s -> %s", mission_id, mission.status.value, updated.status.value)
        return updated

    async def _start(self, mission: Mission) -> Mission:
        updated = await self.missions.update(
            mission.id, status=MissionStatus.IN_PROGRESS, start_time=self._clock())
        if mission.drone_id:
            await self.drones.set_status(mission.drone_id, DroneStatus.IN_MISSION)
        await self.scheduler.start(mission.id)
        return updated

    async def _pause(self, mission: Mission) -> Mission:
        self.scheduler.stop(mission.id)
        return await self.missions.update(mission.id, status=MissionStatus.PAUSED)

    async def _resume(self, mission: Mission) -> Mission:
        updated = await self.missions.update(mission.id, status=MissionStatus.IN_PROGRESS)
        # курсоры берутся из сохранённой миссии
        await self.scheduler.start(mission.id)
        return updated

    async def _abort(self, mission: Mission) -> Mission:
        self.scheduler.stop(mission.id)
        updated = await self.missions.update(
            mission.id, status=MissionStatus.ABORTED, end_time=self._clock())
        if mission.drone_id:
            await self.drones.set_status(mission.drone_id, DroneStatus.AVAILABLE)
        return updated

    async def _complete(self, mission: Mission) -> Mission:
        self.scheduler.stop(mission.id)
        updated = await self.missions.update(
            mission.id, status=MissionStatus.COMPLETED, end_time=self._clock(), progress=100.0)
        if mission.drone_id:
            await self.drones.set_status(mission.drone_id, DroneStatus.AVAILABLE)
        return updated
