# ruff: noqa: I001

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.config import settings
from app.core.errors import LifecycleError, lifecycle_error_handler
from app.core.observability import (
    global_exception_handler,
    request_logging_middleware,
    uptime_seconds,
    utc_now_iso,
)
from app.database import POOL_CONFIG, engine
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.scheduler import DailyJobRunner

api_prefix = (
    settings.api_prefix
    if settings.api_prefix.startswith("/")
    else f"/{settings.api_prefix}"
    if settings.api_prefix
    else ""
)

logger = logging.getLogger("investplan")
logging.basicConfig(
    level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger for middleware without creating circular imports.
app.state.logger = logger

# One queue per process; routes reach it through app.state.
app.state.dispatcher = NotificationDispatcher()
app.state.daily_runner = DailyJobRunner(app.state.dispatcher, hour_utc=settings.reminders_utc_hour)

app.add_exception_handler(LifecycleError, lifecycle_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)


def _run_migrations_if_configured() -> None:
    if not settings.run_migrations_on_start:
        return

    # Avoid running migrations during tests.
    if (settings.environment or "").lower() == "test":
        return

    # Import lazily to keep import graph light for non-migration startups.
    from alembic import command
    from alembic.config import Config
    from sqlalchemy import create_engine, text

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))

    try:
        db_engine = create_engine(settings.database_url, future=True)
        with db_engine.connect() as connection:
            dialect = str(connection.dialect.name or "").lower()

            # Best-effort: avoid concurrent migrations across multiple instances.
            lock_acquired = True
            if dialect == "postgresql":
                lock_acquired = bool(
                    connection.execute(
                        text("select pg_try_advisory_lock(:k)"), {"k": 734100}
                    ).scalar()
                )
            if not lock_acquired:
                logger.info("migrations_skipped_lock_not_acquired")
                return

            try:
                # Reuse this connection inside Alembic env.py (config.attributes['connection']).
                alembic_cfg.attributes["connection"] = connection
                command.upgrade(alembic_cfg, "head")
                logger.info("migrations_applied")
            finally:
                if dialect == "postgresql":
                    connection.execute(text("select pg_advisory_unlock(:k)"), {"k": 734100})
                    connection.commit()
    except Exception as e:
        # Don't crash the API if migrations fail; surface the issue via logs.
        logger.error("migrations_failed", extra={"error": str(e)})


@app.on_event("startup")
def _startup():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "db_pool": POOL_CONFIG,
            "notifications_auto_dispatch": settings.notifications_auto_dispatch,
        },
    )
    _run_migrations_if_configured()
    # Avoid running background threads in test context.
    if (settings.environment or "").lower() == "test" or not settings.scheduler_enabled:
        return
    app.state.daily_runner.start()
    logger.info("scheduler_started", extra={"daily_utc_hour": app.state.daily_runner.hour_utc})


@app.on_event("shutdown")
def _shutdown():
    app.state.daily_runner.stop()
    pending = app.state.dispatcher.pending_count()
    if pending:
        logger.warning("notifications_pending_at_shutdown", extra={"pending": pending})
    engine.dispose()


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": settings.app_name, "docs": docs_path}


@app.get("/healthz", tags=["meta"])
def healthcheck():
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": settings.build_version,
    }
