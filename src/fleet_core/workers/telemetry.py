from __future__ import annotations
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fleet_core.config.settings import Settings
from fleet_core.domain import geo
from fleet_core.domain.models import (
    DroneStatus, Location, Mission, MissionCompleted, MissionStatus,
    Position, Report, TelemetrySample, Waypoint, utcnow,
)
from fleet_core.infra.messaging import topics
from fleet_core.infra.messaging.bus import EventBus
from fleet_core.infra.repositories.base import DroneRepo, MissionRepo, ReportRepo

log = logging.getLogger("telemetry")

SUCCESS_NOTE = "Mission completed successfully"


@dataclass
class TelemetrySession:
    """Состояние симуляции одной миссии; живёт только в реестре планировщика."""
    mission_id: str
    drone_id: str
    waypoints: List[Waypoint]
    speed: float
    estimated_duration: float
    waypoint_index: int
    progress: float
    battery_level: float
    ticks: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class TelemetryScheduler:
    """
    Симулятор телеметрии миссий:
    - не больше одной сессии на миссию (повторный start пересоздаёт сессию)
    - тик раз в interval_s: позиция по текущей точке, разряд батареи, прогресс
    - каждый тик пишет дрон и миссию, затем публикует сэмпл в топик миссии
    - по концу маршрута: миссия completed, дрон available, один отчёт

    Тики одной миссии не перекрываются: следующий ждёт окончания предыдущего,
    расписание считается от старта сессии.
    Наружу (start/stop) ошибки не пробрасываются, только логируются.
    """

    def __init__(
        self,
        missions: MissionRepo,
        drones: DroneRepo,
        reports: ReportRepo,
        bus: EventBus,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        interval_s: Optional[float] = None,
    ) -> None:
        s = settings or Settings()
        self.missions = missions
        self.drones = drones
        self.reports = reports
        self.bus = bus
        self.interval_s = s.TELEMETRY_INTERVAL_S if interval_s is None else interval_s
        self.battery_drain_max = s.BATTERY_DRAIN_MAX
        self.battery_floor = s.BATTERY_FLOOR
        self.progress_step_max = s.PROGRESS_STEP_MAX
        self.progress_tick_cap = s.PROGRESS_TICK_CAP
        self.advance_threshold = s.WAYPOINT_ADVANCE_THRESHOLD
        self.images_range = (s.REPORT_IMAGES_MIN, s.REPORT_IMAGES_MAX)
        self._rng = rng or random.Random()
        self._clock = clock or utcnow
        self._sessions: Dict[str, TelemetrySession] = {}

    # ---- публичный API ----
    async def start(self, mission_id: str) -> None:
        try:
            mission = await self.missions.get(mission_id)
            if mission is None:
                log.warning("telemetry not started: mission %s not found", mission_id)
                return
            if not mission.drone_id:
                log.warning("telemetry not started: mission %s has no drone assigned", mission_id)
                return
            drone = await self.drones.get(mission.drone_id)
            if drone is None:
                log.warning("telemetry not started: drone %s of mission %s not found",
                            mission.drone_id, mission_id)
                return

            # старая сессия гасится до регистрации новой
            self.stop(mission_id)

            waypoints = mission.ordered_waypoints()
            session = TelemetrySession(
                mission_id=mission_id,
                drone_id=drone.id,
                waypoints=waypoints,
                speed=mission.speed,
                estimated_duration=mission.estimated_duration,
                waypoint_index=min(max(mission.current_waypoint, 0), len(waypoints)),
                progress=mission.progress,
                battery_level=drone.battery_level,
            )
            self._sessions[mission_id] = session
            session.task = asyncio.create_task(self._run(session), name=f"telemetry-{mission_id}")
            log.info("telemetry started for mission %s (drone %s, waypoint %d/%d, progress %.1f)",
                     mission_id, drone.id, session.waypoint_index, len(waypoints), session.progress)
        except Exception:
            log.exception("error starting telemetry for mission %s", mission_id)

    def stop(self, mission_id: str) -> bool:
        session = self._sessions.get(mission_id)
        if session is None:
            return False
        if session.task is not None and not session.task.done():
            session.task.cancel()
        del self._sessions[mission_id]
        log.info("telemetry stopped for mission %s after %d ticks", mission_id, session.ticks)
        return True

    def is_active(self, mission_id: str) -> bool:
        return mission_id in self._sessions

    def active_missions(self) -> List[str]:
        return list(self._sessions)

    def tick_count(self, mission_id: str) -> int:
        session = self._sessions.get(mission_id)
        return session.ticks if session else 0

    async def shutdown(self) -> None:
        tasks = [s.task for s in self._sessions.values() if s.task is not None]
        for mission_id in list(self._sessions):
            self.stop(mission_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---- цикл сессии ----
    def _is_live(self, session: TelemetrySession) -> bool:
        return self._sessions.get(session.mission_id) is session

    def _drop(self, session: TelemetrySession) -> None:
        if self._is_live(session):
            del self._sessions[session.mission_id]

    async def _run(self, session: TelemetrySession) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while self._is_live(session):
            deadline = started + (session.ticks + 1) * self.interval_s
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if not self._is_live(session):
                return
            session.ticks += 1
            if await self._tick(session):
                return

    async def _tick(self, session: TelemetrySession) -> bool:
        """Один шаг симуляции. True — сессия закончена."""
        mission_id = session.mission_id
        if session.waypoint_index >= len(session.waypoints):
            self._drop(session)
            await self._complete(session)
            return True

        try:
            wp = session.waypoints[session.waypoint_index]
            battery = max(self.battery_floor,
                          session.battery_level - self._rng.random() * self.battery_drain_max)
            battery = min(battery, session.battery_level)
            progress = min(self.progress_tick_cap,
                           session.progress + self._rng.random() * self.progress_step_max)
            progress = max(progress, session.progress)
            now = self._clock()

            sample = TelemetrySample(
                mission_id=mission_id,
                drone_id=session.drone_id,
                position=Position(latitude=wp.latitude, longitude=wp.longitude, altitude=wp.altitude),
                speed=session.speed,
                battery_level=battery,
                progress=progress,
                current_waypoint=session.waypoint_index,
                total_waypoints=len(session.waypoints),
                # eta по прогрессу до шага
                eta=round(session.estimated_duration * (100 - session.progress) / 100),
                timestamp=now,
            )

            await self.drones.update(
                session.drone_id,
                current_location=Location(latitude=wp.latitude, longitude=wp.longitude,
                                          altitude=wp.altitude, timestamp=now),
                battery_level=battery,
            )
            await self.missions.update(mission_id, current_waypoint=session.waypoint_index,
                                       progress=progress)
            if not self._is_live(session):
                return True

            await self._publish(topics.mission_telemetry(mission_id), sample.payload())

            session.progress = progress
            session.battery_level = battery
            if self._rng.random() > self.advance_threshold:
                session.waypoint_index += 1
        except Exception:
            # сессия остаётся, следующий тик попробует снова
            log.exception("telemetry tick failed for mission %s", mission_id)
        return False

    async def _complete(self, session: TelemetrySession) -> None:
        mission_id = session.mission_id
        try:
            mission = await self.missions.get(mission_id)
            if mission is None:
                log.warning("cannot complete mission %s: not found", mission_id)
                return

            now = self._clock()
            await self.missions.update(
                mission_id,
                status=MissionStatus.COMPLETED,
                end_time=now,
                progress=100.0,
                current_waypoint=len(session.waypoints),
            )
            drone = await self.drones.get(session.drone_id)
            await self.drones.set_status(session.drone_id, DroneStatus.AVAILABLE)

            battery = drone.battery_level if drone else session.battery_level
            report = build_report(
                mission,
                drone_id=session.drone_id,
                final_battery=battery,
                now=now,
                images_captured=self._rng.randrange(*self.images_range),
            )
            await self.reports.create(report)

            event = MissionCompleted(mission_id=mission_id, report_id=report.id)
            await self._publish(topics.mission_completed(mission_id), event.payload())
            log.info("mission %s completed, report %s (%.2f km, %d min)",
                     mission_id, report.id, report.distance_flown, report.duration)
        except Exception:
            log.exception("error completing mission %s", mission_id)

    async def _publish(self, topic: str, payload: dict) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.bus.publish, topic, payload, 1, False)
        except Exception:
            log.exception("publish to %s failed", topic)


def mission_duration_min(mission: Mission, now: datetime) -> float:
    if mission.start_time is None:
        return mission.estimated_duration
    start = mission.start_time
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return (now - start).total_seconds() / 60


def build_report(
    mission: Mission,
    drone_id: str,
    final_battery: float,
    now: datetime,
    images_captured: int,
) -> Report:
    return Report(
        mission_id=mission.id,
        drone_id=drone_id,
        pilot_id=mission.pilot_id,
        duration=round(mission_duration_min(mission, now)),
        distance_flown=geo.route_distance_km(mission.ordered_waypoints()),
        area_covered=geo.polygon_area(mission.polygon),
        average_speed=mission.speed,
        average_altitude=mission.altitude,
        battery_used=100 - final_battery,
        images_captured=images_captured,
        status="success",
        notes=SUCCESS_NOTE,
        generated_at=now,
    )
