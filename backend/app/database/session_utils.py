"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return the dialect name of the engine bound to ``session``.

    Falls back to ``default`` when the session is not bound yet.
    """
    try:
        bind = session.get_bind()
    except SQLAlchemyError:
        return default
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None) or default

