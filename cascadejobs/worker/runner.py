from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.core.config import Settings
from cascadejobs.jobs.executor import ChunkExecutor, ChunkOutcome, ChunkResult
from cascadejobs.jobs.scheduler import ChunkScheduler

logger = logging.getLogger(__name__)

DRAIN_HORIZON = timedelta(days=3650)


class DeleteWorker:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        scheduler: ChunkScheduler | None = None,
        executor: ChunkExecutor | None = None,
    ):
        self._settings = settings
        self._scheduler = scheduler or ChunkScheduler(settings, session_factory)
        self._executor = executor or ChunkExecutor(settings, session_factory, scheduler=self._scheduler)

    def _execute(self, job_id: str) -> ChunkResult:
        try:
            return self._executor.process_chunk(job_id)
        except Exception as exc:
            # The tick stays leased and becomes due again once the lease expires.
            logger.exception("Tick for job %s could not be recorded", job_id)
            return ChunkResult(job_id=job_id, outcome=ChunkOutcome.FAILED, error=str(exc))

    def run_once(self, *, now: datetime | None = None) -> list[ChunkResult]:
        self._scheduler.recover_stalled()
        job_ids = self._scheduler.claim_due(now=now)
        if not job_ids:
            return []
        if len(job_ids) == 1 or self._settings.worker_concurrency == 1:
            return [self._execute(job_id) for job_id in job_ids]
        with ThreadPoolExecutor(max_workers=min(self._settings.worker_concurrency, len(job_ids))) as pool:
            return list(pool.map(self._execute, job_ids))

    def run_until_idle(self, *, max_ticks: int = 10_000) -> list[ChunkResult]:
        """Drain every job regardless of the inter-chunk delay; meant for scripts and tests."""
        results: list[ChunkResult] = []
        while len(results) < max_ticks:
            batch = self.run_once(now=datetime.now(tz=timezone.utc) + DRAIN_HORIZON)
            if not batch:
                break
            results.extend(batch)
        return results

    def run_forever(self, stop_event: threading.Event) -> None:
        poll_seconds = self._settings.worker_poll_ms / 1000
        logger.info("Delete worker started (concurrency=%d)", self._settings.worker_concurrency)
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Delete worker iteration failed")
            stop_event.wait(poll_seconds)
        logger.info("Delete worker stopped")


def start_background_worker(settings: Settings, session_factory: sessionmaker[Session]) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    worker = DeleteWorker(settings, session_factory)
    thread = threading.Thread(target=worker.run_forever, args=(stop_event,), name="cascadejobs-worker", daemon=True)
    thread.start()
    return thread, stop_event
