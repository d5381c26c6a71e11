"""
Quota Aggregator

Usage views computed from stored account quotas, and the refresh path that
re-queries every active account through the Remote Connector.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from poolmgr.errors import NotFoundError, PersistenceError, QuotaUnavailableError
from poolmgr.models import Account, AccountStatus, PoolMembership, StoragePool
from poolmgr.services.remote_connector import RemoteConnector

logger = logging.getLogger(__name__)


def usage_percent(total: int, used: int) -> float:
    """used/total as a percentage in [0, 100]; 0 when total is 0."""
    if not total or total <= 0:
        return 0.0
    percent = float(used) / float(total) * 100
    return round(min(100.0, max(0.0, percent)), 2)


@dataclass
class RefreshSummary:
    refreshed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class QuotaAggregator:

    def __init__(self, session_factory: sessionmaker, connector: RemoteConnector, max_workers: int = 4):
        self.session_factory = session_factory
        self.connector = connector
        self.max_workers = max(1, int(max_workers))

    # ========================================================================
    # VIEWS
    # ========================================================================

    @staticmethod
    def _account_view(account: Account) -> Dict[str, Any]:
        total = int(account.quota_total or 0)
        used = int(account.quota_used or 0)
        return {
            "account_id": account.id,
            "name": account.name,
            "email": account.email,
            "type": account.type,
            "quota_total": total,
            "quota_used": used,
            "quota_free": total - used,
            "usage_percent": usage_percent(total, used),
            "status": account.status,
        }

    @staticmethod
    def _pool_view(pool_id, name, status, account_count, total, used) -> Dict[str, Any]:
        total = int(total or 0)
        used = int(used or 0)
        return {
            "pool_id": pool_id,
            "name": name,
            "status": status,
            "account_count": int(account_count or 0),
            "total_capacity": total,
            "total_used": used,
            "total_free": total - used,
            "usage_percent": usage_percent(total, used),
        }

    def account_stats(self) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            accounts = db.scalars(select(Account).order_by(Account.name)).all()
            return [self._account_view(a) for a in accounts]
        finally:
            db.close()

    def account_stats_for(self, account_id: str) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            account = db.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            return self._account_view(account)
        finally:
            db.close()

    def _pool_rows(self, db, pool_id: Optional[str] = None):
        stmt = (
            select(
                StoragePool.id,
                StoragePool.name,
                StoragePool.status,
                func.count(PoolMembership.account_id),
                func.sum(Account.quota_total),
                func.sum(Account.quota_used),
            )
            .select_from(StoragePool)
            .outerjoin(PoolMembership, PoolMembership.pool_id == StoragePool.id)
            .outerjoin(Account, Account.id == PoolMembership.account_id)
            .group_by(StoragePool.id, StoragePool.name, StoragePool.status)
            .order_by(StoragePool.name)
        )
        if pool_id is not None:
            stmt = stmt.where(StoragePool.id == pool_id)
        return db.execute(stmt).all()

    def pool_stats(self) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            return [self._pool_view(*row) for row in self._pool_rows(db)]
        finally:
            db.close()

    def pool_stats_for(self, pool_id: str) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            rows = self._pool_rows(db, pool_id)
        finally:
            db.close()
        if not rows:
            raise NotFoundError(f"Pool {pool_id} not found")
        return self._pool_view(*rows[0])

    def storage_stats(self) -> Dict[str, Any]:
        """Global totals plus the per-account and per-pool lists."""
        db = self.session_factory()
        try:
            total, used = db.execute(
                select(
                    func.coalesce(func.sum(Account.quota_total), 0),
                    func.coalesce(func.sum(Account.quota_used), 0),
                )
            ).one()
        finally:
            db.close()

        total = int(total or 0)
        used = int(used or 0)
        return {
            "total_capacity": total,
            "total_used": used,
            "total_free": total - used,
            "usage_percent": usage_percent(total, used),
            "account_stats": self.account_stats(),
            "pool_stats": self.pool_stats(),
        }

    # ========================================================================
    # REFRESH
    # ========================================================================

    def _query(self, account_id: str, account_type: str) -> Optional[Tuple[int, int]]:
        try:
            return self.connector.query_quota(account_id, account_type)
        except QuotaUnavailableError as e:
            logger.warning(f"Skipping quota refresh for {account_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"Quota query for {account_id} raised: {e}", exc_info=True)
            return None

    def refresh_all(self) -> RefreshSummary:
        """
        Re-query every active account and store the results.

        Per-account failures are skipped; the batch always completes.
        """
        db = self.session_factory()
        try:
            targets = db.execute(
                select(Account.id, Account.type).where(Account.status == AccountStatus.ACTIVE.value)
            ).all()
        finally:
            db.close()

        summary = RefreshSummary()
        if not targets:
            return summary

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as pool:
            results = list(pool.map(lambda t: self._query(t[0], t[1]), targets))

        for (account_id, _), quota in zip(targets, results):
            if quota is None:
                summary.skipped.append(account_id)
                continue
            try:
                self._store_quota(account_id, *quota)
                summary.refreshed.append(account_id)
            except PersistenceError as e:
                logger.warning(f"Skipping quota refresh for {account_id}: {e}")
                summary.skipped.append(account_id)

        logger.info(f"Quota refresh: {len(summary.refreshed)} refreshed, {len(summary.skipped)} skipped")
        return summary

    def _store_quota(self, account_id: str, total: int, used: int) -> None:
        db = self.session_factory()
        try:
            db.execute(
                sql_update(Account)
                .where(Account.id == account_id)
                .values(quota_total=total, quota_used=used, updated_at=datetime.utcnow())
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(str(e))
        finally:
            db.close()
