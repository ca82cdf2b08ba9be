from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.core.config import Settings
from cascadejobs.db.models import DeletionJob, DeletionJobStatus

logger = logging.getLogger(__name__)


class ChunkScheduler:
    """Durable tick queue: each job row carries at most one pending tick in ``next_run_at``.

    Claiming a tick pushes ``next_run_at`` out by the tick lease with a
    compare-and-set, so a second worker can never pick the same tick up, and a
    tick abandoned by a crashed worker becomes due again once the lease runs out.
    """

    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    @property
    def chunk_delay(self) -> timedelta:
        return timedelta(milliseconds=self._settings.chunk_delay_ms)

    @property
    def tick_lease(self) -> timedelta:
        return timedelta(seconds=self._settings.tick_lease_seconds)

    def trigger_now(self, job_id: str) -> bool:
        """Arm the first tick of a job with zero delay."""
        with self._session_factory() as session:
            result = session.execute(
                update(DeletionJob)
                .where(DeletionJob.id == job_id, DeletionJob.status == DeletionJobStatus.DELETING)
                .values(next_run_at=self._now())
            )
            session.commit()
        return bool(result.rowcount)

    def arm_next(self, job: DeletionJob) -> None:
        """Arm the follow-up tick on a row the caller is about to commit."""
        if job.status != DeletionJobStatus.DELETING:
            job.next_run_at = None
            return
        job.next_run_at = self._now() + self.chunk_delay

    def disarm(self, job: DeletionJob) -> None:
        job.next_run_at = None

    def claim_due(self, *, limit: int | None = None, now: datetime | None = None) -> list[str]:
        current = now or self._now()
        batch = limit or self._settings.worker_claim_batch_size
        claimed: list[str] = []
        with self._session_factory() as session:
            candidates = session.execute(
                select(DeletionJob.id, DeletionJob.next_run_at)
                .where(
                    DeletionJob.status == DeletionJobStatus.DELETING,
                    DeletionJob.next_run_at.is_not(None),
                    DeletionJob.next_run_at <= current,
                )
                .order_by(DeletionJob.next_run_at.asc(), DeletionJob.id.asc())
                .limit(batch)
            ).all()
            for job_id, seen_run_at in candidates:
                result = session.execute(
                    update(DeletionJob)
                    .where(
                        DeletionJob.id == job_id,
                        DeletionJob.status == DeletionJobStatus.DELETING,
                        DeletionJob.next_run_at == seen_run_at,
                    )
                    .values(next_run_at=current + self.tick_lease)
                )
                if result.rowcount:
                    claimed.append(job_id)
            session.commit()
        return claimed

    def recover_stalled(self) -> int:
        """Re-arm deleting jobs that have no pending tick, e.g. after a crash between create and trigger."""
        with self._session_factory() as session:
            result = session.execute(
                update(DeletionJob)
                .where(DeletionJob.status == DeletionJobStatus.DELETING, DeletionJob.next_run_at.is_(None))
                .values(next_run_at=self._now())
            )
            session.commit()
        recovered = int(result.rowcount or 0)
        if recovered:
            logger.warning("Re-armed %d deleting job(s) without a pending tick", recovered)
        return recovered
