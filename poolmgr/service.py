"""
Pooled Storage Service Entrypoint

FastAPI application wiring the account, pool, stats and system routers to
one set of service components, plus startup reconciliation and the
background quota refresher.
"""
import warnings
warnings.filterwarnings('ignore', category=DeprecationWarning, module='sqlalchemy')

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from poolmgr import __version__
from poolmgr.api import accounts, pools, stats, system
from poolmgr.config import Settings
from poolmgr.database import build_engine, build_session_factory, init_db
from poolmgr.errors import NotFoundError, PoolServiceError, ValidationError
from poolmgr.quota_refresher import QuotaRefresher
from poolmgr.services.account_manager import AccountManager
from poolmgr.services.mount_controller import MountController
from poolmgr.services.pool_manager import PoolManager
from poolmgr.services.quota_aggregator import QuotaAggregator
from poolmgr.services.remote_connector import RemoteConnector
from poolmgr.services.runner import CommandRunner, SubprocessRunner
from poolmgr.services.union_composer import UnionComposer
from poolmgr.startup_profile import StartupProfile, validate_service_profile

logger = logging.getLogger(__name__)


def error_status(exc: PoolServiceError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    return 500


def startup_init(app: FastAPI) -> None:
    """Validate profile, initialize database, reconcile pools, start refresher"""
    state = app.state
    validate_service_profile(StartupProfile.from_settings(state.settings))

    init_db(state.engine)

    stale = state.pool_manager.reconcile()
    if stale:
        logger.warning(f"Marked {len(stale)} pool(s) as error after restart: {', '.join(stale)}")

    state.quota_refresher.start()
    logger.info("Pooled storage service startup complete")


def shutdown_cleanup(app: FastAPI) -> None:
    """Stop quota refresher on shutdown"""
    app.state.quota_refresher.stop()
    app.state.engine.dispose()
    logger.info("Pooled storage service shutdown complete")


def create_app(settings: Optional[Settings] = None, runner: Optional[CommandRunner] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    runner = runner or SubprocessRunner(timeout_seconds=settings.command_timeout_seconds)

    engine = build_engine(settings.database_url)
    session_factory = build_session_factory(engine)

    connector = RemoteConnector(settings, runner)
    composer = UnionComposer(settings, runner, connector)
    mounts = MountController(settings, runner)
    aggregator = QuotaAggregator(session_factory, connector, max_workers=settings.quota_refresh_workers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup_init(app)
        yield
        shutdown_cleanup(app)

    app = FastAPI(title="Pooled Storage Manager", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.remote_connector = connector
    app.state.account_manager = AccountManager(session_factory, connector)
    app.state.pool_manager = PoolManager(session_factory, settings, composer, mounts)
    app.state.quota_aggregator = aggregator
    app.state.quota_refresher = QuotaRefresher(aggregator, settings.quota_refresh_interval_seconds)

    app.include_router(system.router)
    app.include_router(accounts.router)
    app.include_router(pools.router)
    app.include_router(stats.router)

    @app.exception_handler(PoolServiceError)
    def handle_service_error(request: Request, exc: PoolServiceError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())})

    @app.get("/")
    def root():
        return {
            "service": "pooled-storage",
            "message": "Pooled storage manager running",
            "version": __version__,
        }

    return app


app = create_app()
