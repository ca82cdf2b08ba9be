from __future__ import annotations

import logging

from sqlalchemy import inspect, text

from cascadejobs.db.models import Base
from cascadejobs.db.session import get_engine

logger = logging.getLogger(__name__)


def initialize_database() -> None:
    engine = get_engine()
    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(bind=engine)

    created = sorted(set(Base.metadata.tables) - existing)
    if created:
        logger.info("Created tables: %s", ", ".join(created))

    if engine.url.drivername.startswith("sqlite"):
        with engine.connect() as conn:
            conn.execute(text("PRAGMA optimize;"))
            conn.commit()
