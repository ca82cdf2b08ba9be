from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from cascadejobs.db.models import Document


class DocumentStore:
    """Document persistence the cascade planner and the chunk executor act on."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def insert(self, table: str, document_id: str, body: dict[str, Any] | None = None) -> None:
        self.insert_many([(table, document_id, body)])

    def insert_many(self, rows: Iterable[tuple[str, str, dict[str, Any] | None]]) -> int:
        now = datetime.now(tz=timezone.utc)
        count = 0
        with self._session_factory() as session:
            for table, document_id, body in rows:
                session.add(Document(table_name=table, document_id=document_id, body=body or {}, created_at=now))
                count += 1
            session.commit()
        return count

    def exists(self, table: str, document_id: str) -> bool:
        with self._session_factory() as session:
            return session.get(Document, (table, document_id)) is not None

    def count_by_table(self) -> dict[str, int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(Document.table_name, func.count()).group_by(Document.table_name).order_by(Document.table_name)
            ).all()
        return {table: int(count) for table, count in rows}

    def remove_if_present(self, session: Session, table: str, document_id: str) -> bool:
        """Fetch-then-delete inside the caller's transaction.

        Returns False when the document is already gone.
        """
        document = session.get(Document, (table, document_id))
        if document is None:
            return False
        session.delete(document)
        session.flush()
        return True
