from __future__ import annotations

import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import cascadejobs.db.session as db_session_module
from cascadejobs.core.config import get_settings
from cascadejobs.db.init_db import initialize_database
from cascadejobs.db.models import DeletionJobStatus
from cascadejobs.documents.store import DocumentStore
from cascadejobs.jobs.executor import ChunkOutcome
from cascadejobs.jobs.scheduler import ChunkScheduler
from cascadejobs.jobs.store import DeletionJobStore
from cascadejobs.jobs.types import PlanEntry
from cascadejobs.worker.runner import DeleteWorker


def setup_env(tmp_path: Path, *, concurrency: int = 1) -> tuple[ChunkScheduler, DeletionJobStore, DocumentStore, DeleteWorker]:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)
    os.environ["CASCADEJOBS_STATE_ROOT"] = state_root.as_posix()
    os.environ["CASCADEJOBS_CHUNK_DELAY_MS"] = "5000"
    os.environ["CASCADEJOBS_TICK_LEASE_SECONDS"] = "30"
    os.environ["CASCADEJOBS_WORKER_CONCURRENCY"] = str(concurrency)

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    settings = get_settings()
    session_factory = db_session_module.get_session_factory()
    scheduler = ChunkScheduler(settings, session_factory)
    return (
        scheduler,
        DeletionJobStore(settings, session_factory),
        DocumentStore(session_factory),
        DeleteWorker(settings, session_factory, scheduler=scheduler),
    )


def make_job(store: DeletionJobStore, documents: DocumentStore, size: int, chunk_size: int, *, table: str = "T") -> str:
    plan = [PlanEntry(table, f"{table}{i}") for i in range(size)]
    documents.insert_many((entry.table, entry.id, None) for entry in plan)
    return store.create(table, "root", plan, chunk_size=chunk_size)


def test_first_tick_is_due_immediately(tmp_path: Path) -> None:
    scheduler, store, documents, _worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=3, chunk_size=1)

    assert scheduler.trigger_now(job_id) is True
    assert scheduler.claim_due() == [job_id]


def test_trigger_ignores_jobs_that_are_not_deleting(tmp_path: Path) -> None:
    scheduler, store, documents, _worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=3, chunk_size=1)
    store.patch(job_id, status=DeletionJobStatus.CANCELLED)

    assert scheduler.trigger_now(job_id) is False
    assert scheduler.claim_due(now=datetime.now(tz=timezone.utc) + timedelta(days=1)) == []


def test_claimed_tick_is_not_handed_out_twice(tmp_path: Path) -> None:
    scheduler, store, documents, _worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=3, chunk_size=1)
    scheduler.trigger_now(job_id)

    assert scheduler.claim_due() == [job_id]
    assert scheduler.claim_due() == []
    leased_until = store.get(job_id).next_run_at
    assert leased_until is not None
    assert leased_until > datetime.now(tz=timezone.utc) + timedelta(seconds=20)


def test_abandoned_tick_becomes_due_after_lease(tmp_path: Path) -> None:
    scheduler, store, documents, _worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=3, chunk_size=1)
    scheduler.trigger_now(job_id)
    assert scheduler.claim_due() == [job_id]

    later = datetime.now(tz=timezone.utc) + timedelta(seconds=31)
    assert scheduler.claim_due(now=later) == [job_id]


def test_follow_up_tick_waits_for_chunk_delay(tmp_path: Path) -> None:
    scheduler, store, documents, worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=4, chunk_size=2)
    scheduler.trigger_now(job_id)

    results = worker.run_once()
    assert [result.outcome for result in results] == [ChunkOutcome.ADVANCED]
    assert worker.run_once() == []

    next_run_at = store.get(job_id).next_run_at
    assert next_run_at is not None
    results = worker.run_once(now=next_run_at + timedelta(milliseconds=1))
    assert [result.outcome for result in results] == [ChunkOutcome.COMPLETED]
    assert store.get(job_id).status == DeletionJobStatus.COMPLETED


def test_concurrent_claims_hand_each_tick_to_one_worker(tmp_path: Path) -> None:
    scheduler, store, documents, _worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=3, chunk_size=1)
    scheduler.trigger_now(job_id)

    barrier = threading.Barrier(2)
    claims: list[list[str]] = []
    lock = threading.Lock()

    def claim() -> None:
        barrier.wait(timeout=2)
        claimed = scheduler.claim_due()
        with lock:
            claims.append(claimed)

    threads = [threading.Thread(target=claim) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(len(claimed) for claimed in claims) == [0, 1]


def test_stalled_job_without_pending_tick_is_rearmed(tmp_path: Path) -> None:
    scheduler, store, documents, worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=2, chunk_size=5)

    # Created but never triggered, as if the process died in between.
    assert store.get(job_id).next_run_at is None
    results = worker.run_once()

    assert [result.job_id for result in results] == [job_id]
    assert store.get(job_id).status == DeletionJobStatus.COMPLETED


def test_worker_drains_independent_jobs_concurrently(tmp_path: Path) -> None:
    scheduler, store, documents, worker = setup_env(tmp_path, concurrency=3)
    job_ids = [make_job(store, documents, size=5, chunk_size=2, table=table) for table in ("A", "B", "C")]
    for job_id in job_ids:
        scheduler.trigger_now(job_id)

    results = worker.run_until_idle()

    assert len(results) == 9
    for job_id in job_ids:
        job = store.get(job_id)
        assert job.status == DeletionJobStatus.COMPLETED
        assert job.deleted_so_far == 5
        per_job = [result.deleted_so_far for result in results if result.job_id == job_id]
        assert per_job == [2, 4, 5]
    assert documents.count_by_table() == {}


def test_cleared_job_with_pending_tick_is_absorbed(tmp_path: Path) -> None:
    scheduler, store, documents, worker = setup_env(tmp_path)
    job_id = make_job(store, documents, size=4, chunk_size=1)
    scheduler.trigger_now(job_id)
    assert scheduler.claim_due() == [job_id]

    store.delete_all()

    # The tick already handed out still runs, and finds nothing.
    result = worker._execute(job_id)
    assert result.outcome == ChunkOutcome.SKIPPED
    assert worker.run_until_idle() == []
    assert documents.count_by_table() == {"T": 4}
