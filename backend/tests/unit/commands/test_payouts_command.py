from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

import app.commands.payouts as payouts_mod
from app.core.exceptions import InvalidPayoutStateException


@pytest.fixture
def runner(monkeypatch) -> MagicMock:
    command = MagicMock()
    monkeypatch.setattr(payouts_mod, "PayoutCommand", lambda: command)
    monkeypatch.setattr(payouts_mod, "get_engine", lambda: None)
    monkeypatch.setattr(payouts_mod, "configure_logging", lambda level: None)
    return command


class TestPayoutsMain:
    def test_balance(self, runner: MagicMock, capsys) -> None:
        runner.balance.return_value = {"instructor_id": "inst-1", "pending_amount": "77.44"}

        assert payouts_mod.main(["balance", "inst-1"]) == 0

        runner.balance.assert_called_once_with("inst-1")
        assert json.loads(capsys.readouterr().out)["pending_amount"] == "77.44"

    def test_process_failure_exit_code(self, runner: MagicMock) -> None:
        runner.process.return_value = {"status": "failed", "error": "declined"}

        assert payouts_mod.main(["process", "p1", "--actor", "admin-1"]) == 1

        runner.process.assert_called_once_with("p1", actor_id="admin-1")

    def test_list_passes_filters(self, runner: MagicMock) -> None:
        runner.list_payouts.return_value = {"total": 0, "items": []}

        assert payouts_mod.main(["list", "--status", "PENDING", "--limit", "5"]) == 0

        runner.list_payouts.assert_called_once_with(
            status="PENDING", instructor_id=None, page=1, limit=5
        )

    def test_unknown_status_rejected(self, runner: MagicMock) -> None:
        with pytest.raises(SystemExit):
            payouts_mod.main(["list", "--status", "LOST"])


class TestPayoutCommand:
    def test_process_reports_domain_errors(self, monkeypatch) -> None:
        service = MagicMock()
        service.process_payout.side_effect = InvalidPayoutStateException(
            "p1", "COMPLETED", "process"
        )
        monkeypatch.setattr(payouts_mod, "PayoutService", lambda db, gateway=None: service)

        command = payouts_mod.PayoutCommand(session_factory=MagicMock())
        result = command.process("p1", actor_id="ops")

        assert result == {
            "status": "failed",
            "code": "INVALID_PAYOUT_STATE",
            "error": "Cannot process a payout with status: COMPLETED",
        }

    def test_balance_against_database(self, session_factory, make_transaction) -> None:
        make_transaction("inst-1", "40.00")
        make_transaction("inst-1", "35.00")

        result = payouts_mod.PayoutCommand(session_factory=session_factory).balance("inst-1")

        assert result["pending_amount"] == "75.00"
        assert result["pending_transaction_count"] == 2
