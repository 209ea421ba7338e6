import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from labplatform.cli import app
from labplatform.config import get_settings
from labplatform.errors import InvalidStateError, PoolExhaustedError

runner = CliRunner()

REQUEST = {
    "id": "req-1",
    "title": "web server",
    "provider": "pve",
    "environment": "dev",
    "status": "completed",
    "requester_id": "alice",
    "approver_id": "bob",
    "resource_id": "res-1",
}


@pytest.fixture(autouse=True)
def fresh_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    with patch("labplatform.cli.setup_logging"):
        yield
    get_settings.cache_clear()


class TestRequestCommands:
    def test_approve_json(self):
        with patch(
            "labplatform.cli.approve_request_command", new=AsyncMock(return_value=REQUEST)
        ) as mock:
            result = runner.invoke(
                app, ["request", "approve", "req-1", "--approver", "bob", "--json"]
            )

        assert result.exit_code == 0, result.output
        mock.assert_awaited_once_with("req-1", "bob", None)
        assert json.loads(result.output)["status"] == "completed"

    def test_invalid_state_exits_nonzero(self):
        error = InvalidStateError("cannot approve request in status completed", "completed")
        with patch(
            "labplatform.cli.approve_request_command", new=AsyncMock(side_effect=error)
        ):
            result = runner.invoke(app, ["request", "approve", "req-1", "--approver", "bob"])

        assert result.exit_code == 1
        assert "cannot approve" in result.output

    def test_reject_requires_reason_option(self):
        result = runner.invoke(app, ["request", "reject", "req-1", "--approver", "bob"])
        assert result.exit_code != 0

    def test_reject_passes_reason(self):
        rejected = {**REQUEST, "status": "rejected", "reason": "budget"}
        with patch(
            "labplatform.cli.reject_request_command", new=AsyncMock(return_value=rejected)
        ) as mock:
            result = runner.invoke(
                app, ["request", "reject", "req-1", "-a", "bob", "-r", "budget"]
            )

        assert result.exit_code == 0, result.output
        mock.assert_awaited_once_with("req-1", "bob", "budget")
        assert "rejected" in result.output

    def test_delete(self):
        with patch(
            "labplatform.cli.delete_request_command", new=AsyncMock(return_value=None)
        ) as mock:
            result = runner.invoke(app, ["request", "delete", "req-1", "--user", "alice"])

        assert result.exit_code == 0
        mock.assert_awaited_once_with("req-1", "alice")


class TestIpamCommands:
    def test_allocate_specific(self):
        allocation = {"id": "a-1", "ip_address": "10.0.0.7", "status": "reserved"}
        with patch(
            "labplatform.cli.allocate_command", new=AsyncMock(return_value=allocation)
        ) as mock:
            result = runner.invoke(app, ["ipam", "allocate", "pool-1", "--address", "10.0.0.7"])

        assert result.exit_code == 0, result.output
        mock.assert_awaited_once_with("pool-1", "10.0.0.7", None)
        assert "10.0.0.7" in result.output

    def test_exhausted_pool(self):
        with patch(
            "labplatform.cli.allocate_command",
            new=AsyncMock(side_effect=PoolExhaustedError("pool-1")),
        ):
            result = runner.invoke(app, ["ipam", "allocate", "pool-1"])

        assert result.exit_code == 1
        assert "no available IP" in result.output


class TestAgainstDatabase:
    def test_init_db_then_missing_request(self, tmp_path):
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "cli.db").exists()

        result = runner.invoke(app, ["request", "show", "missing"])
        assert result.exit_code == 1
        assert "resource request not found: missing" in result.output
