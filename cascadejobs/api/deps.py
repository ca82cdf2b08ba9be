from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from cascadejobs.core.config import get_settings
from cascadejobs.db.session import get_session_factory
from cascadejobs.documents.store import DocumentStore
from cascadejobs.jobs.service import ScheduledDeleteService
from cascadejobs.planner.loader import load_planner
from cascadejobs.planner.types import Planner
from cascadejobs.ratelimit.service import RateLimiter, TwoTierRateLimiter


def get_planner() -> Planner | None:
    settings = get_settings()
    if settings.planner is None:
        return None
    return load_planner(settings)


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    # Buckets must outlive a single request.
    return TwoTierRateLimiter(get_settings())


def get_document_store() -> DocumentStore:
    return DocumentStore(get_session_factory())


def get_scheduled_delete_service(
    planner: Planner | None = Depends(get_planner),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> ScheduledDeleteService:
    return ScheduledDeleteService(
        get_settings(),
        get_session_factory(),
        planner=planner,
        rate_limiter=rate_limiter,
    )
