# backend/app/models/types.py
"""
Custom SQLAlchemy types that work across different database backends.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Numeric, Text
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON on SQLite (tests)
JSONType = JSONB(astext_type=Text()).with_variant(JSON(), "sqlite")

# Currency amounts: 10 integer digits, 2 minor-unit digits
MoneyType = Numeric(12, 2, asdecimal=True)


def now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for defaults."""
    return datetime.now(timezone.utc)
