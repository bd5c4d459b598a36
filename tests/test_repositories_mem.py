"""In-memory repository tests."""

import asyncio

from fleet_core.domain.models import (
    Drone, DroneStatus, Location, Mission, MissionStatus, Report,
)
from fleet_core.infra.repositories import make_repos
from fleet_core.config.settings import Settings


def _repos():
    return make_repos(Settings(REPO_IMPL="mem"))


def test_drone_update_merges_fields_and_revalidates() -> None:
    async def scenario():
        drones, _, _ = _repos()
        drone = await drones.add(Drone(name="Alpha"))

        updated = await drones.update(
            drone.id,
            battery_level=72.5,
            current_location={"latitude": 1.0, "longitude": 2.0, "altitude": 60.0},
        )
        stored = await drones.get(drone.id)
        return updated, stored

    updated, stored = asyncio.run(scenario())

    assert isinstance(updated.current_location, Location)
    assert stored.battery_level == 72.5
    assert stored.name == "Alpha"
    assert stored.current_location.longitude == 2.0


def test_drone_update_of_unknown_id_returns_none() -> None:
    async def scenario():
        drones, _, _ = _repos()
        return await drones.update("drn_missing", battery_level=50.0)

    assert asyncio.run(scenario()) is None


def test_get_returns_a_copy() -> None:
    async def scenario():
        drones, _, _ = _repos()
        drone = await drones.add(Drone(name="Alpha"))
        copy = await drones.get(drone.id)
        copy.battery_level = 1.0
        return await drones.get(drone.id)

    assert asyncio.run(scenario()).battery_level == 100.0


def test_list_available_filters_by_status() -> None:
    async def scenario():
        drones, _, _ = _repos()
        a = await drones.add(Drone(name="A"))
        b = await drones.add(Drone(name="B"))
        await drones.set_status(b.id, DroneStatus.IN_MISSION)
        return a, await drones.list_available(), await drones.list_all()

    a, available, everything = asyncio.run(scenario())

    assert [d.id for d in available] == [a.id]
    assert len(everything) == 2


def test_missions_list_active_excludes_finished() -> None:
    async def scenario():
        _, missions, _ = _repos()
        planned = await missions.create(Mission(title="planned"))
        done = await missions.create(Mission(title="done"))
        aborted = await missions.create(Mission(title="aborted"))
        await missions.update(done.id, status=MissionStatus.COMPLETED)
        await missions.update(aborted.id, status=MissionStatus.ABORTED)
        return planned, await missions.list_active()

    planned, active = asyncio.run(scenario())

    assert [m.id for m in active] == [planned.id]


def test_mission_update_keeps_untouched_fields() -> None:
    async def scenario():
        _, missions, _ = _repos()
        m = await missions.create(Mission(title="survey", speed=7.0))
        await missions.update(m.id, current_waypoint=2, progress=41.0)
        return await missions.get(m.id)

    stored = asyncio.run(scenario())

    assert stored.title == "survey"
    assert stored.speed == 7.0
    assert stored.current_waypoint == 2
    assert stored.progress == 41.0


def test_reports_list_by_mission() -> None:
    def report(mission_id: str) -> Report:
        return Report(
            mission_id=mission_id, drone_id="drn_1", duration=10, distance_flown=1.0,
            area_covered=0.0, average_speed=10.0, average_altitude=60.0,
            battery_used=5.0, images_captured=60,
        )

    async def scenario():
        _, _, reports = _repos()
        first = await reports.create(report("mis_a"))
        await reports.create(report("mis_b"))
        return first, await reports.list_by_mission("mis_a"), await reports.get(first.id)

    first, listed, fetched = asyncio.run(scenario())

    assert [r.id for r in listed] == [first.id]
    assert fetched.mission_id == "mis_a"


def test_reports_are_returned_as_copies() -> None:
    async def scenario():
        _, _, reports = _repos()
        created = await reports.create(Report(
            mission_id="mis_a", drone_id="drn_1", duration=10, distance_flown=1.0,
            area_covered=0.0, average_speed=10.0, average_altitude=60.0,
            battery_used=5.0, images_captured=60,
        ))
        created.notes = "edited by caller"
        fetched = await reports.get(created.id)
        fetched.images_captured = 0
        listed = await reports.list_by_mission("mis_a")
        listed[0].battery_used = 99.0
        return await reports.get(created.id)

    stored = asyncio.run(scenario())

    assert stored.notes == ""
    assert stored.images_captured == 60
    assert stored.battery_used == 5.0
