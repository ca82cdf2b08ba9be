from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class DeletionJobStatus(str, Enum):
    DELETING = "deleting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeletionJob(Base):
    __tablename__ = "deletion_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    root_table: Mapped[str] = mapped_column(String(128), nullable=False)
    root_id: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[DeletionJobStatus] = mapped_column(
        SAEnum(DeletionJobStatus, native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=DeletionJobStatus.DELETING,
    )

    plan: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    deleted_so_far: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_to_delete: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)
    documents_removed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_deletion_jobs_status", "status"),
        Index("ix_deletion_jobs_due", "status", "next_run_at"),
        Index("ix_deletion_jobs_created_id", "created_at", "id"),
    )


class Document(Base):
    __tablename__ = "documents"

    table_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    body: Mapped[dict[str, Any]] = mapped_column(JSON(none_as_null=True), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_documents_table_name", "table_name"),)
