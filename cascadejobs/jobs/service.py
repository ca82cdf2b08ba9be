from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.core.config import Settings
from cascadejobs.db.models import DeletionJob, DeletionJobStatus
from cascadejobs.jobs.scheduler import ChunkScheduler
from cascadejobs.jobs.store import DeletionJobStore, JobValidationError
from cascadejobs.jobs.types import DeletionJobSnapshot, PlanEntry
from cascadejobs.planner.types import Planner, PlanningError
from cascadejobs.ratelimit.service import RateLimiter

logger = logging.getLogger(__name__)


class ScheduledDeleteService:
    """Public surface for scheduled cascade deletes.

    Every mutating call passes the rate limiter first, so a rejection leaves
    no trace in the job store.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        planner: Planner | None,
        rate_limiter: RateLimiter,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._planner = planner
        self._rate_limiter = rate_limiter
        self._store = DeletionJobStore(settings, session_factory)
        self._scheduler = ChunkScheduler(settings, session_factory)

    @property
    def store(self) -> DeletionJobStore:
        return self._store

    def start_scheduled_delete(
        self,
        table: str,
        document_id: str,
        chunk_size: int | None = None,
        *,
        session_id: str,
    ) -> str:
        self._rate_limiter.check(session_id)
        if self._planner is None:
            raise PlanningError("No planner configured for scheduled deletes")

        effective_chunk_size = self._settings.default_chunk_size if chunk_size is None else chunk_size
        if effective_chunk_size < 1:
            raise JobValidationError("chunk_size must be a positive integer")

        result = self._planner.compute_plan(table, document_id)
        if result is None:
            raise PlanningError(f"Planner returned no plan for {table}/{document_id}")
        plan = [PlanEntry(table=entry.table, id=entry.document_id) for entry in result.plan]

        job_id = self._store.create(table, document_id, plan, effective_chunk_size)
        self._scheduler.trigger_now(job_id)
        logger.info(
            "Scheduled delete %s for %s/%s: %d entries in chunks of %d",
            job_id,
            table,
            document_id,
            len(plan),
            effective_chunk_size,
        )
        return job_id

    def cancel_scheduled_delete(self, job_id: str, *, session_id: str) -> DeletionJobSnapshot | None:
        self._rate_limiter.check(session_id)

        with self._session_factory() as session:
            job = session.get(DeletionJob, job_id)
            if job is None:
                return None
            if job.status == DeletionJobStatus.DELETING:
                cancelled = self._store.cancel_if_deleting(session, job_id)
                session.commit()
                session.refresh(job)
                if cancelled:
                    logger.info("Cancelled scheduled delete %s at %d/%d", job_id, job.deleted_so_far, job.total_to_delete)
                else:
                    logger.info("Cancel of %s had no effect, job is already %s", job_id, job.status.value)
            return self._store.to_snapshot(job)

    def list_scheduled_jobs(self) -> list[DeletionJobSnapshot]:
        return self._store.list_all()

    def get_scheduled_job(self, job_id: str) -> DeletionJobSnapshot:
        return self._store.get(job_id)

    def get_current_job(self) -> DeletionJobSnapshot | None:
        return self._store.get_most_relevant()

    def clear_scheduled_jobs(self, *, session_id: str) -> int:
        self._rate_limiter.check(session_id)
        # Pending ticks of deleted rows find nothing and no-op.
        cleared = self._store.delete_all()
        logger.info("Cleared %d scheduled delete job(s)", cleared)
        return cleared
