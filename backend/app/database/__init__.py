"""
Engine, session factory and declarative base for the payments ledger tables.
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, declarative_base, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "future": True}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": 5,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
        "future": True,
        "connect_args": {"connect_timeout": 5, "application_name": "payments_ledger"},
    }


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Create the process-wide engine on first use and bind the session factory."""
    db_url = settings.database_url
    engine = create_engine(db_url, **_build_engine_kwargs(db_url))

    @event.listens_for(engine, "connect")
    def _stamp_connection(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["opened_at"] = datetime.now()
        logger.debug("Opened ledger database connection")

    SessionLocal.configure(bind=engine)
    return engine

