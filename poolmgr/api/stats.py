from fastapi import APIRouter, Depends, Request

from poolmgr.quota_refresher import QuotaRefresher
from poolmgr.services.quota_aggregator import QuotaAggregator

router = APIRouter(prefix="/api/stats", tags=["stats"])


def get_quota_aggregator(request: Request) -> QuotaAggregator:
    return request.app.state.quota_aggregator


@router.get("")
def storage_stats(aggregator: QuotaAggregator = Depends(get_quota_aggregator)):
    """
    Global capacity across all accounts, plus per-account and per-pool views.
    """
    return aggregator.storage_stats()


@router.get("/accounts")
def account_stats(aggregator: QuotaAggregator = Depends(get_quota_aggregator)):
    return aggregator.account_stats()


@router.get("/accounts/{account_id}")
def account_stats_for(account_id: str, aggregator: QuotaAggregator = Depends(get_quota_aggregator)):
    return aggregator.account_stats_for(account_id)


@router.get("/pools")
def pool_stats(aggregator: QuotaAggregator = Depends(get_quota_aggregator)):
    return aggregator.pool_stats()


@router.get("/pools/{pool_id}")
def pool_stats_for(pool_id: str, aggregator: QuotaAggregator = Depends(get_quota_aggregator)):
    return aggregator.pool_stats_for(pool_id)


def get_quota_refresher(request: Request) -> QuotaRefresher:
    return request.app.state.quota_refresher


@router.post("/refresh")
def refresh_all_quotas(refresher: QuotaRefresher = Depends(get_quota_refresher)):
    """Re-query quota for every active account now; failures are skipped."""
    summary = refresher.run_once()
    return {
        "message": "Quotas refreshed",
        "refreshed": len(summary.refreshed),
        "skipped": len(summary.skipped),
    }
