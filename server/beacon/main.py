"""Beacon server main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, hub, geo, storage, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from beacon.api.admin import router as admin_router
from beacon.api.monitoring import router as monitoring_router
from beacon.api.realtime import router as realtime_router
from beacon.api.track import router as track_router
from beacon.config import (
    DEFAULT_ADMIN_PASSWORD,
    DEFAULT_SESSION_SECRET,
    AppConfig,
    load_config,
)
from beacon.core.admin_query import AdminQueryService
from beacon.core.errors import AuthError, RateLimitError
from beacon.core.ingest import VisitIngestor
from beacon.core.ratelimit import RateLimiter
from beacon.core.sessions import SessionRegistry
from beacon.core.stats import ServerStats
from beacon.geo.lookup import GeoEnricher
from beacon.hub.admin_hub import AdminHub
from beacon.storage.file_storage import FileVisitStore

log = structlog.get_logger()

VERSION = "0.1.0"

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: ServerStats | None = None
_store: FileVisitStore | None = None
_sessions: SessionRegistry | None = None
_hub: AdminHub | None = None
_ingestor: VisitIngestor | None = None
_queries: AdminQueryService | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> ServerStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_store() -> FileVisitStore:
    assert _store is not None, "Server not initialized"
    return _store


def get_sessions() -> SessionRegistry:
    assert _sessions is not None, "Server not initialized"
    return _sessions


def get_hub() -> AdminHub:
    assert _hub is not None, "Server not initialized"
    return _hub


def get_ingestor() -> VisitIngestor:
    assert _ingestor is not None, "Server not initialized"
    return _ingestor


def get_queries() -> AdminQueryService:
    assert _queries is not None, "Server not initialized"
    return _queries


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def init_components(config: AppConfig, enricher: GeoEnricher | None = None) -> None:
    """Create every component from ``config`` and install the singletons.

    ``enricher`` overrides the geo adapter built from ``config.geo``.
    """
    global _config, _stats, _store, _sessions, _hub, _ingestor, _queries

    if enricher is None and config.geo.enabled:
        enricher = GeoEnricher(
            token=config.geo.token,
            base_url=config.geo.base_url,
            timeout_seconds=config.geo.timeout_seconds,
            cache_ttl_seconds=config.geo.cache_ttl_seconds,
        )

    stats = ServerStats(active_window_seconds=config.limits.active_window_seconds)
    store = FileVisitStore(config.storage.path, max_limit=config.limits.query_max_limit)
    sessions = SessionRegistry(
        secret=config.admin.session_secret,
        max_age_seconds=config.admin.session_max_age_seconds,
    )
    hub = AdminHub(
        authorize=sessions.resolve,
        is_live=sessions.is_live,
        outbox_size=config.limits.hub_outbox_size,
    )
    limiter = RateLimiter(
        max_requests=config.limits.track_max_requests,
        window_seconds=config.limits.track_window_seconds,
    )

    _config = config
    _stats = stats
    _store = store
    _sessions = sessions
    _hub = hub
    _ingestor = VisitIngestor(
        store=store,
        publisher=hub,
        stats=stats,
        limiter=limiter,
        enricher=enricher,
        anonymize=config.privacy.anonymize_ips,
    )
    _queries = AdminQueryService(store=store, sessions=sessions)


def reset_components() -> None:
    global _config, _stats, _store, _sessions, _hub, _ingestor, _queries
    _config = _stats = _store = _sessions = _hub = _ingestor = _queries = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    log.info("server_starting",
             env=config.server.env,
             storage_path=config.storage.path,
             anonymize_ips=config.privacy.anonymize_ips,
             geo_enabled=config.geo.enabled)

    if config.admin.password == DEFAULT_ADMIN_PASSWORD:
        log.warning("admin_password_is_default")
    if config.admin.session_secret == DEFAULT_SESSION_SECRET:
        log.warning("session_secret_is_default")

    # A store that cannot be opened is fatal.
    init_components(config)

    log.info("server_started",
             host=config.server.host,
             port=config.server.port,
             visits_stored=await get_store().count())

    yield

    log.info("server_stopped")


app = FastAPI(
    title="Beacon",
    description="Visitor tracking beacon with a live admin console",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(AuthError)
async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "unauthorized"})


@app.exception_handler(RateLimitError)
async def _rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"ok": False, "error": "rate_limited"},
        headers={"Retry-After": str(max(1, int(exc.retry_after)))},
    )


app.include_router(track_router)
app.include_router(admin_router)
app.include_router(realtime_router)
app.include_router(monitoring_router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = load_config()
    uvicorn.run(
        "beacon.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
        proxy_headers=True,
    )
