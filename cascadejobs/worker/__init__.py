from cascadejobs.worker.pipeline import (
    build_scheduled_delete_service,
    drain_scheduled_deletes,
    enqueue_scheduled_delete,
    run_delete_worker_once,
)
from cascadejobs.worker.runner import DeleteWorker, start_background_worker

__all__ = [
    "DeleteWorker",
    "build_scheduled_delete_service",
    "enqueue_scheduled_delete",
    "run_delete_worker_once",
    "drain_scheduled_deletes",
    "start_background_worker",
]
