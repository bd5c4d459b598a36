from __future__ import annotations
from fleet_core.config.settings import Settings
from .base import DroneRepo, MissionRepo, ReportRepo


def make_repos(settings: Settings | None = None) -> tuple[DroneRepo, MissionRepo, ReportRepo]:
    s = settings or Settings()
    if s.REPO_IMPL.lower() == "pg":
        # таблицы создаются отдельно через infra.db.postgres.create_all()
        from .drones_pg import DronesPg
        from .missions_pg import MissionsPg
        from .reports_pg import ReportsPg
        return DronesPg(), MissionsPg(), ReportsPg()
    else:
        from .drones_mem import DronesMem
        from .missions_mem import MissionsMem
        from .reports_mem import ReportsMem
        return DronesMem(), MissionsMem(), ReportsMem()
