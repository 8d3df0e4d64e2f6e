# backend/app/repositories/base_repository.py
"""
Base repository for the payments ledger.

Repositories own the queries; services own the transaction. Nothing here
commits. Every database error is re-raised as ``RepositoryException`` so
services never see raw SQLAlchemy errors, and constraint violations on insert
become ``IntegrityConflict`` carrying the driver's constraint text.

Ledger rows are never deleted, so no delete operation is offered.
"""

import logging
from typing import Any, Callable, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from app.database.session_utils import get_dialect_name

from ..core.exceptions import IntegrityConflict, RepositoryException

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Generic data access for one mapped model.

    Attributes:
        db: SQLAlchemy session, owned by the calling service
        model: mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def _guarded(self, action: str, run: Callable[[], R]) -> R:
        try:
            return run()
        except SQLAlchemyError as exc:
            self.logger.error(f"Failed to {action} {self.model.__name__}: {exc}")
            raise RepositoryException(f"Failed to {action} {self.model.__name__}") from exc

    # Reads

    def get_by_id(self, id: str) -> Optional[T]:
        return self._guarded(
            "load", lambda: self.db.query(self.model).filter(self.model.id == id).first()
        )

    def get_for_update(self, id: str) -> Optional[T]:
        """Load a row fresh from the database and hold its lock until the transaction ends."""
        query = (
            self.db.query(self.model)
            .filter(self.model.id == id)
            .with_for_update()
            .populate_existing()
        )
        return self._guarded("lock", query.first)

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        """First row matching exact-match ``criteria``, or None."""
        return self._guarded("find", self.db.query(self.model).filter_by(**criteria).first)

    # Writes

    def create(self, **fields: Any) -> T:
        """
        Insert one row inside a SAVEPOINT. Does NOT commit.

        The savepoint keeps the caller's transaction usable when a unique or
        partial index rejects the row.

        Raises:
            IntegrityConflict: a constraint rejected the row
            RepositoryException: any other database failure
        """
        entity = self.model(**fields)
        try:
            with self.db.begin_nested():
                self.db.add(entity)
                self.db.flush()
        except IntegrityError as exc:
            self.logger.info("Constraint rejected new %s: %s", self.model.__name__, exc.orig)
            raise IntegrityConflict(
                f"Integrity constraint violated: {exc.orig}", constraint_text=str(exc.orig)
            ) from exc
        except SQLAlchemyError as exc:
            self.logger.error(f"Failed to insert {self.model.__name__}: {exc}")
            raise RepositoryException(f"Failed to insert {self.model.__name__}") from exc
        return entity

    def flush(self) -> None:
        """Push pending changes on loaded rows to the database."""
        self._guarded("flush", self.db.flush)

    # Query helpers for subclasses

    def _execute_query(self, query: Query) -> List[T]:
        return self._guarded("query", query.all)

    def _execute_first(self, query: Query) -> Any:
        return self._guarded("query", query.first)

    def _execute_scalar(self, query: Query) -> Any:
        return self._guarded("aggregate", query.scalar)

    def _paginate(self, query: Query, skip: int, limit: int) -> Tuple[List[T], int]:
        """One page of ``query`` plus the unpaginated total."""

        def run() -> Tuple[List[T], int]:
            total = query.order_by(None).count()
            return query.offset(skip).limit(limit).all(), total

        return self._guarded("page", run)
