"""Telemetry simulation tests: session lifecycle, tick semantics, completion."""

import asyncio
import logging
import random
from datetime import timedelta

import pytest

from fleet_core.config.settings import Settings
from fleet_core.domain import geo
from fleet_core.domain.models import (
    Drone, DroneStatus, Mission, MissionStatus, Waypoint, utcnow,
)
from fleet_core.infra.messaging import topics
from fleet_core.infra.messaging.memory_bus import MemoryBus
from fleet_core.infra.repositories.drones_mem import DronesMem
from fleet_core.infra.repositories.missions_mem import MissionsMem
from fleet_core.infra.repositories.reports_mem import ReportsMem
from fleet_core.workers.telemetry import TelemetryScheduler, build_report

INTERVAL = 0.01


def _waypoints() -> list[Waypoint]:
    return [
        Waypoint(latitude=55.750, longitude=37.610, order=1),
        Waypoint(latitude=55.755, longitude=37.620, order=2),
        Waypoint(latitude=55.760, longitude=37.630, order=3),
    ]


class Fleet:
    def __init__(self, settings: Settings | None = None, seed: int = 7) -> None:
        self.drones = DronesMem()
        self.missions = MissionsMem()
        self.reports = ReportsMem()
        self.bus = MemoryBus()
        self.scheduler = TelemetryScheduler(
            self.missions, self.drones, self.reports, self.bus,
            settings=settings or Settings(), rng=random.Random(seed), interval_s=INTERVAL,
        )

    async def mission(self, **overrides) -> Mission:
        drone = await self.drones.add(Drone(name="Alpha", status=DroneStatus.IN_MISSION))
        fields = dict(
            title="survey", drone_id=drone.id, pilot_id="pilot_1",
            waypoints=_waypoints(), speed=10.0, altitude=60.0, estimated_duration=30.0,
            status=MissionStatus.IN_PROGRESS, start_time=utcnow() - timedelta(minutes=10),
            polygon=[(37.61, 55.75), (37.63, 55.75), (37.63, 55.76)],
        )
        fields.update(overrides)
        return await self.missions.create(Mission(**fields))

    async def wait_finished(self, mission_id: str, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.scheduler.is_active(mission_id):
            if loop.time() > deadline:
                raise AssertionError(f"session {mission_id} did not finish")
            await asyncio.sleep(INTERVAL)
        # completion publishes through the executor
        await asyncio.sleep(0.05)

    def samples(self, mission_id: str) -> list[dict]:
        return [m.payload for m in self.bus.messages(topics.mission_telemetry(mission_id))]


def test_mission_runs_to_completion_with_single_report() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return (
            fleet, mission,
            await fleet.missions.get(mission.id),
            await fleet.drones.get(mission.drone_id),
            await fleet.reports.list_by_mission(mission.id),
        )

    fleet, mission, stored, drone, reports = asyncio.run(scenario())
    completed = fleet.bus.messages(topics.mission_completed(mission.id))

    assert stored.status == MissionStatus.COMPLETED
    assert stored.progress == 100.0
    assert stored.current_waypoint == 3
    assert stored.end_time is not None
    assert drone.status == DroneStatus.AVAILABLE

    assert len(reports) == 1
    report = reports[0]
    assert report.status == "success"
    assert report.notes == "Mission completed successfully"
    assert report.duration == 10
    assert report.distance_flown == pytest.approx(geo.route_distance_km(_waypoints()))
    assert report.area_covered == pytest.approx(geo.polygon_area(mission.polygon))
    assert report.average_speed == 10.0
    assert report.average_altitude == 60.0
    assert report.battery_used == pytest.approx(100 - drone.battery_level)
    assert 50 <= report.images_captured < 150
    assert report.pilot_id == "pilot_1"

    assert len(completed) == 1
    assert completed[0].payload == {"missionId": mission.id, "reportId": report.id}


def test_samples_are_monotonic_and_bounded() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet.samples(mission.id)

    samples = asyncio.run(scenario())

    assert samples
    progress = [s["progress"] for s in samples]
    battery = [s["batteryLevel"] for s in samples]
    assert progress == sorted(progress)
    assert all(0 <= p <= 99 for p in progress)
    assert battery == sorted(battery, reverse=True)
    assert all(b >= 10 for b in battery)


def test_sample_payload_shape() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return mission, fleet.samples(mission.id)[0]

    mission, sample = asyncio.run(scenario())

    assert sample["missionId"] == mission.id
    assert sample["droneId"] == mission.drone_id
    assert sample["currentWaypoint"] == 0
    assert sample["totalWaypoints"] == 3
    assert sample["speed"] == 10.0
    assert sample["position"] == {"latitude": 55.750, "longitude": 37.610, "altitude": 60.0}
    assert sample["eta"] == 30
    assert "timestamp" in sample


def test_eta_uses_progress_before_the_tick() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission(estimated_duration=100.0)
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet.samples(mission.id)

    samples = asyncio.run(scenario())

    assert samples[0]["eta"] == 100
    for previous, current in zip(samples, samples[1:]):
        assert current["eta"] == round(100 - previous["progress"])


def test_tick_persists_drone_and_mission_state() -> None:
    settings = Settings(WAYPOINT_ADVANCE_THRESHOLD=1.0)

    async def scenario():
        fleet = Fleet(settings)
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await asyncio.sleep(INTERVAL * 5)
        fleet.scheduler.stop(mission.id)
        await asyncio.sleep(0.05)
        return (
            fleet.samples(mission.id)[-1],
            await fleet.drones.get(mission.drone_id),
            await fleet.missions.get(mission.id),
        )

    last, drone, stored = asyncio.run(scenario())

    assert drone.current_location.latitude == 55.750
    assert drone.battery_level == pytest.approx(last["batteryLevel"])
    assert stored.progress == pytest.approx(last["progress"])
    assert stored.status == MissionStatus.IN_PROGRESS


def test_restart_keeps_a_single_session() -> None:
    settings = Settings(WAYPOINT_ADVANCE_THRESHOLD=1.0)

    async def scenario():
        fleet = Fleet(settings)
        fleet.scheduler.interval_s = 0.05
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await fleet.scheduler.start(mission.id)
        active = fleet.scheduler.active_missions()
        await asyncio.sleep(0.26)
        fleet.scheduler.stop(mission.id)
        await asyncio.sleep(0.05)
        return mission, active, len(fleet.samples(mission.id))

    mission, active, count = asyncio.run(scenario())

    assert active == [mission.id]
    assert 2 <= count <= 7


def test_stop_halts_publishing() -> None:
    settings = Settings(WAYPOINT_ADVANCE_THRESHOLD=1.0)

    async def scenario():
        fleet = Fleet(settings)
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await asyncio.sleep(INTERVAL * 4)
        assert fleet.scheduler.stop(mission.id) is True
        await asyncio.sleep(0.05)
        before = len(fleet.samples(mission.id))
        await asyncio.sleep(INTERVAL * 10)
        return fleet, mission, before, len(fleet.samples(mission.id))

    fleet, mission, before, after = asyncio.run(scenario())

    assert before == after
    assert not fleet.scheduler.is_active(mission.id)


def test_stop_unknown_mission_is_noop() -> None:
    fleet = Fleet()
    assert fleet.scheduler.stop("mis_unknown") is False
    assert fleet.scheduler.active_missions() == []


def test_start_without_mission_or_drone_creates_no_session() -> None:
    async def scenario():
        fleet = Fleet()
        await fleet.scheduler.start("mis_unknown")
        orphan = await fleet.missions.create(Mission(title="orphan", drone_id="drn_gone"))
        unassigned = await fleet.missions.create(Mission(title="unassigned"))
        await fleet.scheduler.start(orphan.id)
        await fleet.scheduler.start(unassigned.id)
        return fleet.scheduler.active_missions()

    assert asyncio.run(scenario()) == []


def test_mission_without_waypoints_completes_on_first_tick() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission(waypoints=[])
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet, mission, await fleet.reports.list_by_mission(mission.id)

    fleet, mission, reports = asyncio.run(scenario())

    assert fleet.samples(mission.id) == []
    assert len(reports) == 1
    assert reports[0].distance_flown == 0.0


def test_resume_continues_from_stored_cursors() -> None:
    async def scenario():
        fleet = Fleet()
        mission = await fleet.mission(current_waypoint=2, progress=80.0)
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet.samples(mission.id)

    samples = asyncio.run(scenario())

    assert samples[0]["currentWaypoint"] == 2
    assert samples[0]["progress"] >= 80.0


class FlakyDrones(DronesMem):
    def __init__(self) -> None:
        super().__init__()
        self.failures = 2

    async def update(self, drone_id, **changes):
        if "battery_level" in changes and self.failures:
            self.failures -= 1
            raise ConnectionError("store unavailable")
        return await super().update(drone_id, **changes)


def test_failed_tick_keeps_session_running() -> None:
    async def scenario():
        fleet = Fleet()
        fleet.drones = FlakyDrones()
        fleet.scheduler.drones = fleet.drones
        mission = await fleet.mission()
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet, mission

    fleet, mission = asyncio.run(scenario())
    samples = fleet.samples(mission.id)

    assert samples[0]["currentWaypoint"] == 0
    assert len(fleet.bus.messages(topics.mission_completed(mission.id))) == 1


class BrokenReports(ReportsMem):
    async def create(self, r):
        raise ConnectionError("report store unavailable")


def test_failed_completion_is_logged_and_session_removed(caplog) -> None:
    async def scenario():
        fleet = Fleet()
        fleet.reports = BrokenReports()
        fleet.scheduler.reports = fleet.reports
        mission = await fleet.mission(waypoints=[])
        await fleet.scheduler.start(mission.id)
        await fleet.wait_finished(mission.id)
        return fleet, mission, await fleet.reports.list_by_mission(mission.id)

    with caplog.at_level(logging.ERROR, logger="telemetry"):
        fleet, mission, reports = asyncio.run(scenario())

    assert fleet.scheduler.active_missions() == []
    assert reports == []
    assert fleet.bus.messages(topics.mission_completed(mission.id)) == []
    assert any("error completing mission" in r.getMessage() for r in caplog.records)


def test_shutdown_cancels_all_sessions() -> None:
    settings = Settings(WAYPOINT_ADVANCE_THRESHOLD=1.0)

    async def scenario():
        fleet = Fleet(settings)
        first = await fleet.mission()
        second = await fleet.mission()
        await fleet.scheduler.start(first.id)
        await fleet.scheduler.start(second.id)
        assert len(fleet.scheduler.active_missions()) == 2
        await fleet.scheduler.shutdown()
        return fleet.scheduler.active_missions()

    assert asyncio.run(scenario()) == []


def test_build_report_without_start_time_uses_estimate() -> None:
    mission = Mission(title="m", estimated_duration=42.4, waypoints=_waypoints())
    report = build_report(mission, drone_id="drn_1", final_battery=63.0,
                          now=utcnow(), images_captured=77)

    assert report.duration == 42
    assert report.battery_used == 37.0
    assert report.images_captured == 77
    assert report.area_covered == 0.0
