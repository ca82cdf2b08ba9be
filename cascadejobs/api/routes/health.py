from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from cascadejobs.core.config import get_settings
from cascadejobs.db.session import get_session_factory
from cascadejobs.jobs.store import DeletionJobStore

router = APIRouter(tags=["health"])


@router.get("/health")
def get_health() -> dict[str, object]:
    settings = get_settings()
    counts = DeletionJobStore(settings, get_session_factory()).count_by_status()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "worker_enabled": settings.worker_enabled,
        "jobs": {status.value: count for status, count in counts.items()},
        "timestamp": datetime.now(tz=timezone.utc),
    }
