"""
FastAPI server for the timetable cache. Run with run_api_server(app) in a background thread.
Central endpoint: GET /api/tasks. Timetable routes come from timetable_cache.timetable.api
(get_router(service_app)) and are mounted under /api/timetable/.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from timetable_cache.core.errors import AppError

logger = logging.getLogger(__name__)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def create_app(service_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given TimetableCacheApp instance."""
    app = FastAPI(title="Timetable Cache API", description="Cached timetables, classes and tasks")

    @app.exception_handler(AppError)
    def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List periodic tasks: DB schedules and active in-memory timers."""
        from timetable_cache.core.models import get_all_task_schedules

        db_schedules = get_all_task_schedules()
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_timers = service_app.task_manager.get_active_timers()
        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in active_timers
        ]

        return {"db_schedules": db_schedules, "active_timers": active_list}

    from timetable_cache.timetable.api import get_router

    app.include_router(get_router(service_app), prefix="/api/timetable")
    return app


def run_api_server(service_app: Any) -> Optional[threading.Thread]:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = service_app.config.section("api")
    enabled = api_config.get("enabled", False)
    logger.info(
        f"API config: enabled={enabled}, config_file={service_app.config.config_file}, api section={list(api_config.keys())}"
    )
    if not enabled:
        logger.info("API server not started: set api.enabled to true in your config file to enable.")
        return None
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(service_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
    return thread
