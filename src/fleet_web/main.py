from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from fleet_core.config.settings import Settings
from fleet_core.domain.models import Drone, Mission, Waypoint
from fleet_core.infra.messaging import topics
from fleet_core.infra.messaging.bus import EventBus, Message
from fleet_core.infra.messaging.memory_bus import MemoryBus
from fleet_core.infra.messaging.room_hub import RoomHub
from fleet_core.infra.repositories import make_repos
from fleet_core.services.mission_control import (
    DroneUnavailable, InvalidMissionAction, MissionControl, MissionNotFound,
)
from fleet_core.utils.logging import setup as setup_logging
from fleet_core.workers.telemetry import TelemetryScheduler

log = logging.getLogger("fleet-web")

APP_ROOT = Path(__file__).parent
DEFAULT_SEED = APP_ROOT / "seed.yaml"

app = FastAPI(title="Drone Fleet Telemetry")

settings = Settings()
hub = RoomHub()


def make_bus(s: Settings) -> EventBus:
    impl = s.BUS_IMPL.lower()
    if impl == "mqtt":
        from fleet_core.infra.messaging.mqtt_bus import MqttBus
        return MqttBus(s.MQTT_URL, client_id="fleet-web")
    if impl == "mem":
        return MemoryBus()
    return hub


def _build_state() -> None:
    global drones_repo, missions_repo, reports_repo, bus, scheduler, control
    drones_repo, missions_repo, reports_repo = make_repos(settings)
    bus = make_bus(settings)
    scheduler = TelemetryScheduler(missions_repo, drones_repo, reports_repo, bus, settings=settings)
    control = MissionControl(missions_repo, drones_repo, scheduler)


_build_state()


def reset_state() -> None:
    """Пересоздать репозитории и планировщик (тесты)."""
    for mission_id in scheduler.active_missions():
        scheduler.stop(mission_id)
    _build_state()


def load_seed(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


async def seed_repos(cfg: Dict[str, Any]) -> None:
    for d in cfg.get("drones", []):
        await drones_repo.add(Drone(**d))
    for m in cfg.get("missions", []):
        await missions_repo.create(Mission(**m))
    log.info("seeded %d drones, %d missions",
             len(cfg.get("drones", [])), len(cfg.get("missions", [])))


# === Startup / shutdown ===
@app.on_event("startup")
async def _startup() -> None:
    setup_logging(settings.LOG_LEVEL)
    hub.start()

    if settings.REPO_IMPL.lower() == "pg":
        from fleet_core.infra.db.postgres import create_all
        await create_all()

    if bus is not hub:
        bus.start()
    if settings.BUS_IMPL.lower() == "mqtt":
        # события из брокера -> websocket-комнаты
        def _forward(message: Message) -> None:
            hub.publish(message.topic, message.payload)

        bus.subscribe(topics.MISSION_EVENTS_ALL, _forward, qos=1)

    if settings.SEED_FILE:
        seed_path = Path(settings.SEED_FILE)
        if not seed_path.exists():
            seed_path = DEFAULT_SEED
        await seed_repos(load_seed(seed_path))

    # после рестарта (pg) миссии in-progress продолжают телеметрию
    await control.resume_active()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await scheduler.shutdown()
    if bus is not hub:
        bus.stop()
    hub.stop()


# === Маршруты API ===
class ControlRequest(BaseModel):
    action: str


class MissionCreate(BaseModel):
    title: str
    drone_id: str
    pilot_id: Optional[str] = None
    waypoints: List[Waypoint] = []
    polygon: List[Tuple[float, float]] = []
    speed: float = 10.0
    altitude: float = 60.0
    estimated_duration: Optional[float] = None


async def _apply(mission_id: str, action: str) -> Dict[str, Any]:
    try:
        mission = await control.apply(mission_id, action)
    except MissionNotFound as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidMissionAction as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return {
        "success": True,
        "message": f"Mission {action} accepted",
        "data": mission.model_dump(mode="json"),
    }


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "environment": settings.ENV}


@app.get("/api/drones")
async def api_drones():
    return {"drones": [d.model_dump(mode="json") for d in await drones_repo.list_all()]}


@app.get("/api/drones/available")
async def api_drones_available():
    return {"drones": [d.model_dump(mode="json") for d in await drones_repo.list_available()]}


@app.post("/api/missions", status_code=201)
async def api_create_mission(body: MissionCreate):
    try:
        mission = await control.create(**body.model_dump())
    except DroneUnavailable as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return {
        "success": True,
        "message": "Mission created successfully",
        "data": mission.model_dump(mode="json"),
    }


@app.get("/api/missions/{mission_id}")
async def api_mission(mission_id: str):
    mission = await missions_repo.get(mission_id)
    if mission is None:
        raise HTTPException(status_code=404, detail="Mission not found")
    return mission.model_dump(mode="json")


@app.post("/api/missions/{mission_id}/start")
async def api_start(mission_id: str):
    return await _apply(mission_id, "start")


@app.post("/api/missions/{mission_id}/abort")
async def api_abort(mission_id: str):
    return await _apply(mission_id, "abort")


@app.patch("/api/missions/{mission_id}/control")
async def api_control(mission_id: str, body: ControlRequest):
    return await _apply(mission_id, body.action)


@app.get("/api/missions/{mission_id}/reports")
async def api_reports(mission_id: str):
    if await missions_repo.get(mission_id) is None:
        raise HTTPException(status_code=404, detail="Mission not found")
    reports = await reports_repo.list_by_mission(mission_id)
    return {"reports": [r.model_dump(mode="json") for r in reports]}


@app.get("/api/reports/{report_id}")
async def api_report(report_id: str):
    report = await reports_repo.get(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report.model_dump(mode="json")


@app.get("/api/telemetry/active")
async def api_active():
    return {"missions": scheduler.active_missions()}


# === WebSocket ===
def _room_command(text: str) -> Optional[tuple[str, str]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    kind, mission_id = data.get("type"), data.get("missionId")
    if kind not in ("joinMission", "leaveMission") or not isinstance(mission_id, str):
        return None
    return kind, mission_id


@app.websocket("/ws")
async def ws(websocket: WebSocket):
    await websocket.accept()
    log.info("websocket client connected")
    try:
        while True:
            text = await websocket.receive_text()
            command = _room_command(text)
            if command is None:
                await websocket.send_text(json.dumps({"event": "error", "data": "unknown command"}))
                continue
            kind, mission_id = command
            if kind == "joinMission":
                hub.join(mission_id, websocket)
            else:
                hub.leave(mission_id, websocket)
            await websocket.send_text(json.dumps({"event": kind, "missionId": mission_id}))
    except WebSocketDisconnect:
        log.info("websocket client disconnected")
    finally:
        hub.leave_all(websocket)
