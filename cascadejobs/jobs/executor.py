from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.core.config import Settings
from cascadejobs.db.models import DeletionJob, DeletionJobStatus
from cascadejobs.documents.store import DocumentStore
from cascadejobs.jobs.scheduler import ChunkScheduler

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


class ChunkOutcome(str, Enum):
    SKIPPED = "skipped"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ChunkResult:
    job_id: str
    outcome: ChunkOutcome
    attempted: int = 0
    removed: int = 0
    deleted_so_far: int | None = None
    error: str | None = None


class ChunkExecutor:
    """Runs one tick of a deletion job.

    A tick loads the job, deletes the next ``chunk_size`` plan entries and
    advances ``deleted_so_far`` by the number of entries attempted, all in one
    transaction. Entries whose document is already gone count as processed.
    Any other error rolls the chunk back and parks the job in ``failed``.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        documents: DocumentStore | None = None,
        scheduler: ChunkScheduler | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._documents = documents or DocumentStore(session_factory)
        self._scheduler = scheduler or ChunkScheduler(settings, session_factory)

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def process_chunk(self, job_id: str) -> ChunkResult:
        with self._session_factory() as session:
            job = session.get(DeletionJob, job_id)
            if job is None:
                logger.debug("Tick for unknown job %s ignored", job_id)
                return ChunkResult(job_id=job_id, outcome=ChunkOutcome.SKIPPED)
            if job.status != DeletionJobStatus.DELETING:
                logger.debug("Tick for job %s ignored, status is %s", job_id, job.status.value)
                return ChunkResult(job_id=job_id, outcome=ChunkOutcome.SKIPPED, deleted_so_far=job.deleted_so_far)

            try:
                result = self._run_chunk(session, job)
                session.commit()
                return result
            except Exception as exc:
                session.rollback()
                message = str(exc) or UNKNOWN_ERROR_MESSAGE
                logger.exception("Chunk of job %s failed", job_id)

        return self._mark_failed(job_id, message)

    def _run_chunk(self, session: Session, job: DeletionJob) -> ChunkResult:
        start = job.deleted_so_far
        chunk = job.plan[start : start + job.chunk_size]

        removed = 0
        for entry in chunk:
            if self._documents.remove_if_present(session, entry["table"], entry["id"]):
                removed += 1
            else:
                logger.debug("Job %s: %s/%s already gone", job.id, entry["table"], entry["id"])

        processed = start + len(chunk)
        remaining = len(job.plan) - processed
        job.deleted_so_far = processed
        job.documents_removed = job.documents_removed + removed
        job.updated_at = self._now()

        if remaining <= 0:
            job.status = DeletionJobStatus.COMPLETED
            job.finished_at = job.updated_at
            self._scheduler.disarm(job)
            logger.info(
                "Job %s completed: %d entries processed, %d documents removed",
                job.id,
                processed,
                job.documents_removed,
            )
            outcome = ChunkOutcome.COMPLETED
        else:
            self._scheduler.arm_next(job)
            logger.debug("Job %s advanced to %d/%d", job.id, processed, job.total_to_delete)
            outcome = ChunkOutcome.ADVANCED

        return ChunkResult(
            job_id=job.id,
            outcome=outcome,
            attempted=len(chunk),
            removed=removed,
            deleted_so_far=processed,
        )

    def _mark_failed(self, job_id: str, message: str) -> ChunkResult:
        with self._session_factory() as session:
            job = session.get(DeletionJob, job_id)
            if job is None:
                return ChunkResult(job_id=job_id, outcome=ChunkOutcome.FAILED, error=message)
            if job.status == DeletionJobStatus.DELETING:
                now = self._now()
                job.status = DeletionJobStatus.FAILED
                job.error = message
                job.finished_at = now
                job.updated_at = now
                self._scheduler.disarm(job)
                session.commit()
            return ChunkResult(
                job_id=job_id,
                outcome=ChunkOutcome.FAILED,
                deleted_so_far=job.deleted_so_far,
                error=message,
            )
