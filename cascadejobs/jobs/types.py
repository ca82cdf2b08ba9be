from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cascadejobs.db.models import DeletionJobStatus


@dataclass(frozen=True, slots=True)
class PlanEntry:
    table: str
    id: str

    def to_dict(self) -> dict[str, str]:
        return {"table": self.table, "id": self.id}


@dataclass(slots=True)
class DeletionJobSnapshot:
    id: str
    root_table: str
    root_id: str
    status: DeletionJobStatus
    plan: list[PlanEntry]
    deleted_so_far: int
    total_to_delete: int
    chunk_size: int
    documents_removed: int
    error: str | None
    next_run_at: datetime | None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None

    @property
    def remaining(self) -> int:
        return self.total_to_delete - self.deleted_so_far
