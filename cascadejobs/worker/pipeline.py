from __future__ import annotations

from cascadejobs.core.config import get_settings
from cascadejobs.db.session import get_session_factory
from cascadejobs.jobs.executor import ChunkResult
from cascadejobs.jobs.service import ScheduledDeleteService
from cascadejobs.planner.loader import load_planner
from cascadejobs.ratelimit.service import TwoTierRateLimiter
from cascadejobs.worker.runner import DeleteWorker


def build_scheduled_delete_service() -> ScheduledDeleteService:
    settings = get_settings()
    return ScheduledDeleteService(
        settings,
        get_session_factory(),
        planner=load_planner(settings),
        rate_limiter=TwoTierRateLimiter(settings),
    )


def enqueue_scheduled_delete(
    table: str,
    document_id: str,
    chunk_size: int | None = None,
    *,
    session_id: str = "cli",
) -> str:
    service = build_scheduled_delete_service()
    return service.start_scheduled_delete(table, document_id, chunk_size, session_id=session_id)


def run_delete_worker_once() -> list[ChunkResult]:
    worker = DeleteWorker(get_settings(), get_session_factory())
    return worker.run_once()


def drain_scheduled_deletes(*, max_ticks: int = 10_000) -> list[ChunkResult]:
    worker = DeleteWorker(get_settings(), get_session_factory())
    return worker.run_until_idle(max_ticks=max_ticks)
