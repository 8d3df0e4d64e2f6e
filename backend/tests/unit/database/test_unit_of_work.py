from __future__ import annotations

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import RepositoryException, ValidationException
from app.database.unit_of_work import AtomicResult, run_atomic


class TestRunAtomic:
    def test_commits_on_success(self) -> None:
        session = Mock()

        result = run_atomic(session, lambda: "done", name="ok")

        assert result.ok is True
        assert result.value == "done"
        assert result.unwrap() == "done"
        session.commit.assert_called_once()
        session.rollback.assert_not_called()

    def test_domain_error_is_business_failure(self) -> None:
        session = Mock()
        error = ValidationException("nope")

        def work():
            raise error

        result = run_atomic(session, work)

        assert result.ok is False
        assert result.is_business_failure
        assert not result.is_infrastructure_failure
        assert result.error is error
        session.rollback.assert_called_once()
        session.commit.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [
            RepositoryException("db down"),
            OperationalError("SELECT 1", {}, Exception("gone")),
            RuntimeError("boom"),
        ],
    )
    def test_other_errors_are_infrastructure_failures(self, error) -> None:
        session = Mock()

        def work():
            raise error

        result = run_atomic(session, work)

        assert result.is_infrastructure_failure
        session.rollback.assert_called_once()

    def test_commit_failure_rolls_back(self) -> None:
        session = Mock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("lost"))

        result = run_atomic(session, lambda: 1)

        assert result.ok is False
        assert result.is_infrastructure_failure
        session.rollback.assert_called_once()

    def test_unwrap_reraises(self) -> None:
        error = ValidationException("bad")
        result: AtomicResult[int] = AtomicResult(ok=False, error=error, failure_kind="business")

        with pytest.raises(ValidationException) as exc_info:
            result.unwrap()

        assert exc_info.value is error
