from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from cascadejobs.api.routes.documents import router as documents_router
from cascadejobs.api.routes.health import router as health_router
from cascadejobs.api.routes.scheduled_deletes import router as scheduled_deletes_router
from cascadejobs.core.config import get_settings
from cascadejobs.core.logging import configure_logging
from cascadejobs.db.init_db import initialize_database
from cascadejobs.db.session import get_session_factory
from cascadejobs.worker.runner import start_background_worker


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    worker = None
    if settings.worker_enabled:
        worker = start_background_worker(settings, get_session_factory())
    yield
    if worker is not None:
        thread, stop_event = worker
        stop_event.set()
        thread.join(timeout=settings.tick_lease_seconds)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(scheduled_deletes_router, prefix="/api/v1")
    app.include_router(documents_router, prefix="/api/v1")
    return app
