"""Pytest configuration and fixtures for poolmgr.

Every external command goes through a FakeRunner wired to an in-memory
MountTable, so no test touches rclone or the real mount table. Each test gets
its own SQLite file under tmp_path.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from poolmgr.config import Settings
from poolmgr.database import build_engine, build_session_factory, init_db
from poolmgr.models import Account, AccountStatus
from poolmgr.services.account_manager import AccountManager
from poolmgr.services.mount_controller import MountController
from poolmgr.services.pool_manager import PoolManager
from poolmgr.services.quota_aggregator import QuotaAggregator
from poolmgr.services.remote_connector import RemoteConnector
from poolmgr.services.runner import FakeRunner, MountTable
from poolmgr.services.union_composer import UnionComposer
from poolmgr.service import create_app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'pool.db'}",
        rclone_config_path=str(tmp_path / "rclone.conf"),
        mount_root=str(tmp_path / "mnt"),
        mount_timeout_seconds=0,
        mount_poll_interval_seconds=0,
        quota_refresh_interval_seconds=0,
        quota_refresh_workers=2,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def mount_table(runner) -> MountTable:
    return MountTable(runner)


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def connector(settings, runner) -> RemoteConnector:
    return RemoteConnector(settings, runner)


@pytest.fixture
def composer(settings, runner, connector) -> UnionComposer:
    return UnionComposer(settings, runner, connector)


@pytest.fixture
def mounts(settings, runner, mount_table) -> MountController:
    return MountController(settings, runner)


@pytest.fixture
def pool_manager(session_factory, settings, composer, mounts) -> PoolManager:
    return PoolManager(session_factory, settings, composer, mounts)


@pytest.fixture
def account_manager(session_factory, connector) -> AccountManager:
    return AccountManager(session_factory, connector)


@pytest.fixture
def aggregator(session_factory, connector) -> QuotaAggregator:
    return QuotaAggregator(session_factory, connector, max_workers=2)


@pytest.fixture
def make_account(session_factory):
    """Insert an account row directly, bypassing rclone registration."""
    counter = {"n": 0}

    def _make(
        account_id=None,
        account_type="google",
        quota_total=0,
        quota_used=0,
        status=AccountStatus.ACTIVE.value,
        name=None,
    ) -> Account:
        counter["n"] += 1
        account_id = account_id or f"acct{counter['n']}"
        account = Account(
            id=account_id,
            name=name or f"Account {account_id}",
            type=account_type,
            email=f"{account_id}@example.com",
            access_token="{}",
            quota_total=quota_total,
            quota_used=quota_used,
            status=status,
            # distinct timestamps keep newest-first ordering stable
            created_at=datetime(2024, 1, 1) + timedelta(seconds=counter["n"]),
        )
        db = session_factory()
        try:
            db.add(account)
            db.commit()
        finally:
            db.close()
        return account

    return _make


@pytest.fixture
def app(settings, runner, mount_table):
    return create_app(settings, runner)


@pytest.fixture
def client(app):
    """HTTP client; entering the context runs startup (init_db, reconcile)."""
    with TestClient(app) as test_client:
        yield test_client
