from __future__ import annotations

import argparse
import signal
import threading
from typing import Sequence

from cascadejobs.core.config import get_settings
from cascadejobs.core.logging import configure_logging
from cascadejobs.db.init_db import initialize_database
from cascadejobs.db.session import get_session_factory
from cascadejobs.worker.pipeline import drain_scheduled_deletes, enqueue_scheduled_delete, run_delete_worker_once
from cascadejobs.worker.runner import DeleteWorker


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the scheduled cascade-delete worker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Process due ticks once and exit")
    mode.add_argument("--drain", action="store_true", help="Ignore inter-chunk delays and run every job to the end")
    mode.add_argument(
        "--enqueue",
        nargs=2,
        metavar=("TABLE", "ID"),
        help="Plan and schedule a cascade delete of one document, then exit",
    )
    parser.add_argument("--chunk-size", type=int, default=None, help="Entries deleted per tick for --enqueue")
    parser.add_argument("--session-id", default="cli", help="Rate-limit session for --enqueue")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()

    if args.enqueue:
        table, document_id = args.enqueue
        job_id = enqueue_scheduled_delete(table, document_id, args.chunk_size, session_id=args.session_id)
        print(job_id)
        return
    if args.drain:
        results = drain_scheduled_deletes()
        print(f"processed {len(results)} tick(s)")
        return
    if args.once:
        results = run_delete_worker_once()
        print(f"processed {len(results)} tick(s)")
        return

    worker = DeleteWorker(settings, get_session_factory())
    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    worker.run_forever(stop_event)


if __name__ == "__main__":
    main()
