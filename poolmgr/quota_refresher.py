"""
Quota Refresher

Background service that keeps stored account quotas current by running
QuotaAggregator.refresh_all() on a fixed interval.

Runs in a daemon thread; an interval of 0 disables it.
"""

import threading
import logging
from datetime import datetime
from typing import Optional

from poolmgr.services.quota_aggregator import QuotaAggregator, RefreshSummary

logger = logging.getLogger(__name__)


class QuotaRefresher:
    """
    Periodic quota refresh.
    Runs in background thread.
    """

    def __init__(self, aggregator: QuotaAggregator, interval_seconds: int = 300):
        """
        Initialize quota refresher.

        Args:
            aggregator: Aggregator whose refresh_all() is called each cycle
            interval_seconds: Seconds between refreshes (0 disables)
        """
        self.aggregator = aggregator
        self.interval = int(interval_seconds)

        self.running = False
        self.refresh_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self.last_run_at: Optional[datetime] = None
        self.last_summary: Optional[RefreshSummary] = None

        logger.info(f"Quota refresher initialized: interval={interval_seconds}s")

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    def start(self):
        """Start refresher in background thread"""
        if not self.enabled:
            logger.info("Quota refresher disabled (interval=0)")
            return
        if self.running:
            logger.warning("Quota refresher already running")
            return

        self.running = True
        self._stop_event.clear()
        self.refresh_thread = threading.Thread(target=self._refresh_loop, name="quota-refresher", daemon=True)
        self.refresh_thread.start()

        logger.info("Quota refresher started")

    def stop(self):
        """Stop refresher"""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()

        if self.refresh_thread and self.refresh_thread.is_alive():
            self.refresh_thread.join(timeout=5)

        logger.info("Quota refresher stopped")

    def run_once(self) -> RefreshSummary:
        summary = self.aggregator.refresh_all()
        self.last_run_at = datetime.utcnow()
        self.last_summary = summary
        return summary

    def _refresh_loop(self):
        """Main refresh loop (runs in background thread)"""
        # first refresh happens one interval after startup
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Quota refresh error: {e}", exc_info=True)
