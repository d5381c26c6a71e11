"""
System API

Liveness, service status and read-only system settings.

Endpoints:
- GET /api/health: Liveness probe
- GET /api/status: rclone version and pool/account counts
- GET /api/settings/system: Effective mount root and rclone config path
"""

from datetime import datetime

from fastapi import APIRouter, Request
from sqlalchemy import func, select

from poolmgr import __version__
from poolmgr.models import Account, PoolStatus, StoragePool

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health")
def health():
    return {"status": "healthy", "version": __version__, "timestamp": datetime.utcnow().isoformat()}


@router.get("/status")
def service_status(request: Request):
    state = request.app.state
    db = state.session_factory()
    try:
        total_pools = db.scalar(select(func.count(StoragePool.id))) or 0
        running_pools = db.scalar(
            select(func.count(StoragePool.id)).where(StoragePool.status == PoolStatus.RUNNING.value)
        ) or 0
        total_accounts = db.scalar(select(func.count(Account.id))) or 0
    finally:
        db.close()

    refresher = state.quota_refresher
    last_refresh = refresher.last_run_at.isoformat() if refresher.last_run_at else None
    return {
        "rclone_version": state.remote_connector.tool_version(),
        "total_pools": total_pools,
        "running_pools": running_pools,
        "total_accounts": total_accounts,
        "quota_refresh_interval_seconds": refresher.interval,
        "last_quota_refresh_at": last_refresh,
    }


@router.get("/settings/system")
def system_settings(request: Request):
    settings = request.app.state.settings
    return {
        "mount_path": settings.mount_root,
        "rclone_config_path": settings.rclone_config_path,
        "default_chunk_size": settings.default_chunk_size,
        "version": __version__,
    }
