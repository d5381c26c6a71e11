"""Tests for the background QuotaRefresher."""

from unittest.mock import Mock

from poolmgr.quota_refresher import QuotaRefresher
from poolmgr.services.quota_aggregator import RefreshSummary


class TestQuotaRefresher:

    def test_disabled_with_zero_interval(self) -> None:
        aggregator = Mock()
        refresher = QuotaRefresher(aggregator, interval_seconds=0)

        refresher.start()

        assert refresher.enabled is False
        assert refresher.running is False
        assert refresher.refresh_thread is None

    def test_run_once_records_summary(self) -> None:
        summary = RefreshSummary(refreshed=["A"], skipped=["B"])
        aggregator = Mock()
        aggregator.refresh_all.return_value = summary
        refresher = QuotaRefresher(aggregator, interval_seconds=60)

        assert refresher.run_once() is summary
        assert refresher.last_summary is summary
        assert refresher.last_run_at is not None

    def test_loop_survives_a_failing_cycle(self) -> None:
        summary = RefreshSummary(refreshed=["A"])
        aggregator = Mock()
        aggregator.refresh_all.side_effect = [RuntimeError("database locked"), summary]
        refresher = QuotaRefresher(aggregator, interval_seconds=60)
        # two cycles, then stop
        refresher._stop_event = Mock(wait=Mock(side_effect=[False, False, True]))

        refresher._refresh_loop()

        assert aggregator.refresh_all.call_count == 2
        assert refresher.last_summary is summary

    def test_start_and_stop(self) -> None:
        aggregator = Mock()
        refresher = QuotaRefresher(aggregator, interval_seconds=3600)

        refresher.start()
        assert refresher.running is True
        assert refresher.refresh_thread.is_alive()

        refresher.stop()
        assert refresher.running is False
        assert not refresher.refresh_thread.is_alive()
        aggregator.refresh_all.assert_not_called()
