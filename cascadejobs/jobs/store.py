from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.core.config import Settings
from cascadejobs.db.models import DeletionJob, DeletionJobStatus
from cascadejobs.jobs.types import DeletionJobSnapshot, PlanEntry


class JobNotFoundError(RuntimeError):
    pass


class JobValidationError(ValueError):
    pass


PATCHABLE_FIELDS = frozenset({"status", "deleted_so_far", "documents_removed", "error", "next_run_at", "finished_at"})


class DeletionJobStore:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _normalize_plan(self, plan: Sequence[PlanEntry | dict[str, Any]] | None) -> list[dict[str, str]]:
        if plan is None:
            raise JobValidationError("plan is required")
        entries: list[dict[str, str]] = []
        for index, raw in enumerate(plan):
            entry = raw if isinstance(raw, PlanEntry) else PlanEntry(table=raw.get("table", ""), id=raw.get("id", ""))
            if not entry.table or not entry.id:
                raise JobValidationError(f"plan entry {index} must name both table and id")
            entries.append(entry.to_dict())
        if not entries:
            raise JobValidationError("plan must contain at least one entry")
        return entries

    def create(
        self,
        root_table: str,
        root_id: str,
        plan: Sequence[PlanEntry | dict[str, Any]] | None,
        chunk_size: int,
    ) -> str:
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
            raise JobValidationError("chunk_size must be a positive integer")
        if chunk_size > self._settings.max_chunk_size:
            raise JobValidationError(f"chunk_size must be <= {self._settings.max_chunk_size}")
        if not root_table.strip() or not root_id.strip():
            raise JobValidationError("root_table and root_id cannot be blank")
        entries = self._normalize_plan(plan)

        now = self._now()
        job = DeletionJob(
            id=str(uuid4()),
            root_table=root_table,
            root_id=root_id,
            status=DeletionJobStatus.DELETING,
            plan=entries,
            deleted_so_far=0,
            total_to_delete=len(entries),
            chunk_size=chunk_size,
            documents_removed=0,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(job)
            session.commit()
            return job.id

    def find(self, job_id: str) -> DeletionJobSnapshot | None:
        with self._session_factory() as session:
            job = session.get(DeletionJob, job_id)
            return None if job is None else self.to_snapshot(job)

    def get(self, job_id: str) -> DeletionJobSnapshot:
        snapshot = self.find(job_id)
        if snapshot is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return snapshot

    def patch(self, job_id: str, **fields: Any) -> DeletionJobSnapshot:
        with self._session_factory() as session:
            job = session.get(DeletionJob, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            self.apply_patch(job, fields)
            session.commit()
            session.refresh(job)
            return self.to_snapshot(job)

    def apply_patch(self, job: DeletionJob, fields: dict[str, Any]) -> None:
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise JobValidationError(f"Fields cannot be patched: {sorted(unknown)}")

        if "deleted_so_far" in fields:
            value = fields["deleted_so_far"]
            if value < job.deleted_so_far:
                raise JobValidationError("deleted_so_far cannot move backwards")
            if value > job.total_to_delete:
                raise JobValidationError("deleted_so_far cannot exceed total_to_delete")
        if "status" in fields:
            fields["status"] = DeletionJobStatus(fields["status"])

        for name, value in fields.items():
            setattr(job, name, value)
        job.updated_at = self._now()

    def cancel_if_deleting(self, session: Session, job_id: str) -> bool:
        """Compare-and-set ``deleting -> cancelled`` inside the caller's transaction.

        Returns False when the job already left ``deleting``, for instance a
        tick that completed it after the caller read the row.
        """
        now = self._now()
        result = session.execute(
            update(DeletionJob)
            .where(DeletionJob.id == job_id, DeletionJob.status == DeletionJobStatus.DELETING)
            .values(status=DeletionJobStatus.CANCELLED, finished_at=now, updated_at=now, next_run_at=None)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def list_all(self) -> list[DeletionJobSnapshot]:
        with self._session_factory() as session:
            rows = session.scalars(select(DeletionJob).order_by(DeletionJob.created_at.desc(), DeletionJob.id.desc())).all()
            return [self.to_snapshot(row) for row in rows]

    def get_most_relevant(self) -> DeletionJobSnapshot | None:
        with self._session_factory() as session:
            active = session.scalars(
                select(DeletionJob).where(DeletionJob.status == DeletionJobStatus.DELETING).limit(2)
            ).all()
            if len(active) == 1:
                return self.to_snapshot(active[0])
            latest = session.scalar(
                select(DeletionJob).order_by(DeletionJob.created_at.desc(), DeletionJob.id.desc()).limit(1)
            )
            return None if latest is None else self.to_snapshot(latest)

    def count_by_status(self) -> dict[DeletionJobStatus, int]:
        with self._session_factory() as session:
            counts = dict(session.execute(select(DeletionJob.status, func.count()).group_by(DeletionJob.status)).all())
        return {status: int(counts.get(status, 0)) for status in DeletionJobStatus}

    def delete_all(self) -> int:
        with self._session_factory() as session:
            result = session.execute(delete(DeletionJob))
            session.commit()
        return int(result.rowcount or 0)

    def to_snapshot(self, job: DeletionJob) -> DeletionJobSnapshot:
        return DeletionJobSnapshot(
            id=job.id,
            root_table=job.root_table,
            root_id=job.root_id,
            status=job.status,
            plan=[PlanEntry(table=entry["table"], id=entry["id"]) for entry in job.plan],
            deleted_so_far=job.deleted_so_far,
            total_to_delete=job.total_to_delete,
            chunk_size=job.chunk_size,
            documents_removed=job.documents_removed,
            error=job.error,
            next_run_at=_coerce_utc(job.next_run_at),
            created_at=_coerce_utc(job.created_at),
            updated_at=_coerce_utc(job.updated_at),
            finished_at=_coerce_utc(job.finished_at),
        )


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def snapshot_to_dict(snapshot: DeletionJobSnapshot, *, include_plan: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": snapshot.id,
        "root_table": snapshot.root_table,
        "root_id": snapshot.root_id,
        "status": snapshot.status.value,
        "deleted_so_far": snapshot.deleted_so_far,
        "total_to_delete": snapshot.total_to_delete,
        "chunk_size": snapshot.chunk_size,
        "documents_removed": snapshot.documents_removed,
        "error": snapshot.error,
        "next_run_at": snapshot.next_run_at,
        "created_at": snapshot.created_at,
        "updated_at": snapshot.updated_at,
        "finished_at": snapshot.finished_at,
    }
    if include_plan:
        payload["plan"] = [entry.to_dict() for entry in snapshot.plan]
    return payload
