from __future__ import annotations

import argparse
import os
import time
from pathlib import Path

import cascadejobs.db.session as db_session_module
from cascadejobs.core.config import get_settings
from cascadejobs.db.init_db import initialize_database
from cascadejobs.db.models import Document
from cascadejobs.jobs.scheduler import ChunkScheduler
from cascadejobs.jobs.store import DeletionJobStore
from cascadejobs.jobs.types import PlanEntry
from cascadejobs.worker.runner import DeleteWorker


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark chunked cascade-delete throughput")
    parser.add_argument("--state-root", required=True, help="State root directory")
    parser.add_argument("--jobs", type=int, default=4, help="Number of independent jobs")
    parser.add_argument("--documents-per-job", type=int, default=5000, help="Plan length of each job")
    parser.add_argument("--chunk-size", type=int, default=100, help="Entries deleted per tick")
    parser.add_argument("--concurrency", type=int, default=4, help="Worker threads across jobs")
    parser.add_argument("--missing-ratio", type=float, default=0.0, help="Share of plan entries already gone")
    return parser.parse_args()


def configure_env(state_root: Path, concurrency: int, chunk_size: int) -> None:
    state_root.mkdir(parents=True, exist_ok=True)
    os.environ["CASCADEJOBS_STATE_ROOT"] = state_root.as_posix()
    os.environ["CASCADEJOBS_WORKER_CONCURRENCY"] = str(concurrency)
    os.environ["CASCADEJOBS_MAX_CHUNK_SIZE"] = str(max(chunk_size, 500))

    get_settings.cache_clear()
    db_session_module.reset_engine()


def seed_fixture(total_jobs: int, documents_per_job: int, chunk_size: int, missing_ratio: float) -> list[str]:
    session_factory = db_session_module.get_session_factory()
    skip_every = int(1 / missing_ratio) if missing_ratio > 0 else 0
    plans: list[tuple[str, list[PlanEntry]]] = []

    with session_factory() as session:
        batch: list[Document] = []
        for job_idx in range(total_jobs):
            table = f"bench_{job_idx}"
            plan = [PlanEntry(table, f"d{doc_idx}") for doc_idx in range(documents_per_job)]
            plans.append((table, plan))
            for doc_idx, entry in enumerate(plan):
                if skip_every and doc_idx % skip_every == 0:
                    continue
                batch.append(Document(table_name=entry.table, document_id=entry.id, body={"i": doc_idx}))
                if len(batch) >= 2000:
                    session.add_all(batch)
                    session.flush()
                    batch.clear()

        if batch:
            session.add_all(batch)
            session.flush()

        session.commit()

    store = DeletionJobStore(get_settings(), session_factory)
    scheduler = ChunkScheduler(get_settings(), session_factory)
    job_ids: list[str] = []
    for table, plan in plans:
        job_id = store.create(table, "root", plan, chunk_size)
        scheduler.trigger_now(job_id)
        job_ids.append(job_id)
    return job_ids


def benchmark() -> tuple[int, float]:
    worker = DeleteWorker(get_settings(), db_session_module.get_session_factory())
    start = time.perf_counter()
    results = worker.run_until_idle(max_ticks=1_000_000)
    elapsed = time.perf_counter() - start
    return len(results), elapsed


def main() -> None:
    args = parse_args()
    configure_env(Path(args.state_root), args.concurrency, args.chunk_size)
    initialize_database()
    job_ids = seed_fixture(args.jobs, args.documents_per_job, args.chunk_size, args.missing_ratio)
    ticks, elapsed = benchmark()

    store = DeletionJobStore(get_settings(), db_session_module.get_session_factory())
    statuses = sorted({store.get(job_id).status.value for job_id in job_ids})
    entries = args.jobs * args.documents_per_job
    rate = entries / elapsed if elapsed else float("inf")
    print(
        f"jobs={args.jobs} entries={entries} ticks={ticks} elapsed_seconds={elapsed:.3f} "
        f"entries_per_second={rate:.0f} statuses={','.join(statuses)}"
    )


if __name__ == "__main__":
    main()
