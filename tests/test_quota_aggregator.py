"""Tests for QuotaAggregator views and refresh_all."""

import pytest

from poolmgr.errors import NotFoundError
from poolmgr.models import AccountStatus
from poolmgr.services.runner import CommandResult
from poolmgr.services.quota_aggregator import usage_percent


@pytest.mark.parametrize(
    "total,used,expected",
    [
        (0, 0, 0.0),
        (0, 50, 0.0),
        (100, 25, 25.0),
        (3, 1, 33.33),
        (100, 150, 100.0),
        (100, -5, 0.0),
    ],
)
def test_usage_percent(total, used, expected) -> None:
    assert usage_percent(total, used) == expected


class TestViews:

    def test_account_view(self, aggregator, make_account) -> None:
        make_account("A", quota_total=200, quota_used=50, name="alpha")
        view = aggregator.account_stats_for("A")
        assert view["quota_free"] == 150
        assert view["usage_percent"] == 25.0
        assert view["name"] == "alpha"
        assert "access_token" not in view

    def test_pool_view_sums_members(self, aggregator, make_account, pool_manager) -> None:
        make_account("A", quota_total=1000, quota_used=100)
        make_account("B", quota_total=3000, quota_used=900)
        make_account("C", quota_total=5000, quota_used=5000)
        pool = pool_manager.create_pool("pair", ["A", "B"])

        view = aggregator.pool_stats_for(pool.id)
        assert view["account_count"] == 2
        assert view["total_capacity"] == 4000
        assert view["total_used"] == 1000
        assert view["total_free"] == 3000
        assert view["usage_percent"] == 25.0

    def test_empty_pool_is_listed(self, aggregator, pool_manager) -> None:
        pool = pool_manager.create_pool("empty", [])
        [view] = aggregator.pool_stats()
        assert view["pool_id"] == pool.id
        assert view["account_count"] == 0
        assert view["total_capacity"] == 0
        assert view["usage_percent"] == 0.0

    def test_global_view(self, aggregator, make_account, pool_manager) -> None:
        make_account("A", quota_total=1000, quota_used=250, name="a")
        make_account("B", quota_total=1000, quota_used=750, name="b")
        pool_manager.create_pool("all", ["A", "B"])

        stats = aggregator.storage_stats()
        assert stats["total_capacity"] == 2000
        assert stats["total_used"] == 1000
        assert stats["total_free"] == 1000
        assert stats["usage_percent"] == 50.0
        assert [a["account_id"] for a in stats["account_stats"]] == ["A", "B"]
        assert len(stats["pool_stats"]) == 1

    def test_empty_database(self, aggregator) -> None:
        stats = aggregator.storage_stats()
        assert stats["total_capacity"] == 0
        assert stats["usage_percent"] == 0.0
        assert stats["account_stats"] == []
        assert stats["pool_stats"] == []

    def test_missing_entities(self, aggregator) -> None:
        with pytest.raises(NotFoundError):
            aggregator.account_stats_for("nope")
        with pytest.raises(NotFoundError):
            aggregator.pool_stats_for("nope")


class TestRefreshAll:

    def test_skips_failures_and_inactive_accounts(self, aggregator, make_account, runner) -> None:
        make_account("ok", quota_total=1, quota_used=1)
        make_account("broken", quota_total=100, quota_used=10)
        make_account("idle", status=AccountStatus.INACTIVE.value, quota_total=7, quota_used=7)

        def about(argv):
            if argv[2] == "google_broken:":
                return CommandResult(argv, 1, stderr="rate limited")
            return CommandResult(argv, 0, stdout='{"total": 500, "used": 125}')

        runner.on(["rclone", "about"], about)

        summary = aggregator.refresh_all()

        assert summary.refreshed == ["ok"]
        assert summary.skipped == ["broken"]
        queried = [c[2] for c in runner.calls_for("rclone", "about")]
        assert "google_idle:" not in queried

        views = {v["account_id"]: v for v in aggregator.account_stats()}
        assert (views["ok"]["quota_total"], views["ok"]["quota_used"]) == (500, 125)
        assert (views["broken"]["quota_total"], views["broken"]["quota_used"]) == (100, 10)
        assert (views["idle"]["quota_total"], views["idle"]["quota_used"]) == (7, 7)

    def test_unexpected_exception_is_skipped(self, aggregator, make_account, runner) -> None:
        make_account("A")

        def explode(argv):
            raise RuntimeError("runner crashed")

        runner.on(["rclone", "about"], explode)
        summary = aggregator.refresh_all()
        assert summary.skipped == ["A"]
        assert summary.refreshed == []

    def test_no_active_accounts(self, aggregator) -> None:
        summary = aggregator.refresh_all()
        assert summary.refreshed == []
        assert summary.skipped == []
