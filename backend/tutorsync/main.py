import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging
from .routine_routes import router as routine_router
from .schedule_routes import router as schedule_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Tutorsync Scheduling Backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(schedule_router)
app.include_router(routine_router)

settings_snapshot = get_settings()
logger.info("Backend starting with persistence mode: %s", settings_snapshot.persistence_mode)
logger.info("Default timezone: %s", settings_snapshot.default_timezone)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence_mode": settings.persistence_mode}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    if settings.persistence_mode == "memory":
        return {"status": "skipped", "persistence_mode": "memory"}

    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "persistence_mode": settings.persistence_mode,
        "pool": get_pool_snapshot(engine),
    }
