"""Tests for AccountManager: connectivity-gated creation, quota refresh, status."""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from poolmgr.errors import (
    ConfigurationError,
    ConnectivityError,
    NotFoundError,
    PersistenceError,
    QuotaUnavailableError,
    ValidationError,
)
from poolmgr.models import AccountStatus
from poolmgr.services.account_manager import AccountManager


@pytest.fixture
def quota(runner):
    runner.on(["rclone", "about"], stdout='{"total": 15000000000, "used": 5000000000}')


class TestCreateAccount:

    def test_registers_probes_and_persists(self, account_manager, runner, quota) -> None:
        account = account_manager.create_account("Work Drive", "Google", email="me@example.com", token='{"a":1}')

        assert account.type == "google"
        assert account.status == AccountStatus.ACTIVE.value
        assert (account.quota_total, account.quota_used) == (15000000000, 5000000000)
        name = f"google_{account.id}"
        assert [c[:3] for c in runner.calls] == [
            ["rclone", "config", "create"],
            ["rclone", "lsd", f"{name}:"],
            ["rclone", "about", f"{name}:"],
        ]
        assert runner.calls[0][3] == name
        assert account_manager.get_account(account.id).email == "me@example.com"

    def test_unreachable_remote_is_removed(self, account_manager, runner) -> None:
        runner.on(["rclone", "lsd"], returncode=1, stderr="couldn't connect")

        with pytest.raises(ConnectivityError):
            account_manager.create_account("Broken", "microsoft")

        deletes = runner.calls_for("rclone", "config", "delete")
        assert len(deletes) == 1
        assert deletes[0][3].startswith("microsoft_")
        assert account_manager.list_accounts() == []

    def test_quota_failure_is_tolerated(self, account_manager, runner) -> None:
        runner.on(["rclone", "about"], returncode=1, stderr="not supported")
        account = account_manager.create_account("NoQuota", "dropbox")
        assert (account.quota_total, account.quota_used) == (0, 0)

    def test_register_failure(self, account_manager, runner) -> None:
        runner.on(["rclone", "config", "create"], returncode=1, stderr="bad token")
        with pytest.raises(ConfigurationError, match="bad token"):
            account_manager.create_account("X", "google")
        assert account_manager.list_accounts() == []

    @pytest.mark.parametrize("name,account_type", [("", "google"), ("X", "box")])
    def test_invalid_input_makes_no_calls(self, account_manager, runner, name, account_type) -> None:
        with pytest.raises(ValidationError):
            account_manager.create_account(name, account_type)
        assert runner.calls == []


class TestQueries:

    def test_newest_first(self, account_manager, make_account) -> None:
        make_account("old")
        make_account("new")
        assert [a.id for a in account_manager.list_accounts()] == ["new", "old"]

    def test_missing(self, account_manager) -> None:
        with pytest.raises(NotFoundError):
            account_manager.get_account("nope")


class TestDeleteAccount:

    def test_removes_remote_and_memberships(self, account_manager, pool_manager, make_account, runner) -> None:
        make_account("A", "google")
        make_account("B", "microsoft")
        pool = pool_manager.create_pool("p", ["A", "B"])

        account_manager.delete_account("A")

        assert runner.calls_for("rclone", "config", "delete")[0][3] == "google_A"
        assert [a.id for a in pool_manager.get_pool(pool.id).accounts] == ["B"]
        with pytest.raises(NotFoundError):
            account_manager.get_account("A")

    def test_failed_commit_keeps_remote(self, account_manager, session_factory, connector, make_account, runner) -> None:
        make_account("A")

        def failing_session():
            db = session_factory()
            db.commit = Mock(side_effect=OperationalError("DELETE", {}, Exception("database is locked")))
            return db

        with pytest.raises(PersistenceError):
            AccountManager(failing_session, connector).delete_account("A")

        assert runner.calls_for("rclone", "config", "delete") == []
        assert account_manager.get_account("A").id == "A"

    def test_remote_failure_does_not_block(self, account_manager, make_account, runner) -> None:
        make_account("A")
        runner.on(["rclone", "config", "delete"], returncode=1)
        account_manager.delete_account("A")
        assert account_manager.list_accounts() == []

    def test_missing(self, account_manager) -> None:
        with pytest.raises(NotFoundError):
            account_manager.delete_account("nope")


class TestRefreshQuota:

    def test_updates_stored_values(self, account_manager, make_account, quota) -> None:
        make_account("A", quota_total=1, quota_used=1)
        refreshed = account_manager.refresh_quota("A")
        assert (refreshed.quota_total, refreshed.quota_used) == (15000000000, 5000000000)

    def test_failure_keeps_stored_values(self, account_manager, make_account, runner) -> None:
        make_account("A", quota_total=100, quota_used=40)
        runner.on(["rclone", "about"], stdout="garbage")

        with pytest.raises(QuotaUnavailableError):
            account_manager.refresh_quota("A")

        stored = account_manager.get_account("A")
        assert (stored.quota_total, stored.quota_used) == (100, 40)


class TestUpdateStatus:

    def test_valid_status(self, account_manager, make_account) -> None:
        make_account("A")
        assert account_manager.update_status("A", "Inactive").status == "inactive"

    def test_invalid_status(self, account_manager, make_account) -> None:
        make_account("A")
        with pytest.raises(ValidationError, match="expected one of"):
            account_manager.update_status("A", "paused")

    def test_missing(self, account_manager) -> None:
        with pytest.raises(NotFoundError):
            account_manager.update_status("nope", "active")
