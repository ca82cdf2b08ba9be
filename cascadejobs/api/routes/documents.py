from __future__ import annotations

from fastapi import APIRouter, Depends

from cascadejobs.api.deps import get_document_store
from cascadejobs.api.schemas.scheduled_deletes import DocumentCountsResponse
from cascadejobs.documents.store import DocumentStore

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("/counts", response_model=DocumentCountsResponse)
def get_document_counts(store: DocumentStore = Depends(get_document_store)) -> DocumentCountsResponse:
    tables = store.count_by_table()
    return DocumentCountsResponse(tables=tables, total=sum(tables.values()))
