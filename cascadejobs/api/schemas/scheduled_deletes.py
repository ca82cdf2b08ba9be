from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class StartScheduledDeleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    table: str = Field(min_length=1, max_length=128)
    id: str = Field(min_length=1, max_length=256)
    chunk_size: int | None = Field(default=None, ge=1)
    session_id: str = Field(min_length=1, max_length=128)


class SessionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    session_id: str = Field(min_length=1, max_length=128)


class StartScheduledDeleteResponse(BaseModel):
    job_id: str


class ClearScheduledJobsResponse(BaseModel):
    cleared: int


class PlanEntryResponse(BaseModel):
    table: str
    id: str


class ScheduledJobResponse(BaseModel):
    id: str
    root_table: str
    root_id: str
    status: str
    plan: list[PlanEntryResponse]
    deleted_so_far: int
    total_to_delete: int
    chunk_size: int
    documents_removed: int
    error: str | None
    next_run_at: datetime | None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None


class ScheduledJobListResponse(BaseModel):
    items: list[ScheduledJobResponse]


class DocumentCountsResponse(BaseModel):
    tables: dict[str, int]
    total: int
