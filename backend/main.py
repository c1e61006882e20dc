from contextlib import asynccontextmanager
from fastapi import FastAPI
from sqlmodel import SQLModel
from backend.api.routers import public_routers,admin_routers
from backend.audit.audit_logger import AuditLogger
from backend.common.custom_exceptions import register_all_exceptions
from backend.common.logging_setup import setup_logging, shutdown_logging
from backend.middlewares.rate_limit_middleware import RateLimitMiddleware
from backend.middlewares.request_id_middleware import RequestIdMiddleware
from backend.db.connection import async_engine,async_session
from backend.api.__init__ import version_prefix,cur_version
from backend.config.admin_config import admin_config
from backend.config.settings import config_settings
from backend.rate_limiting.attempt_limiter import AttemptLimiter
from backend.schema import full_schema  # noqa: F401  registers the tables on SQLModel.metadata


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()

    if config_settings.DB_CREATE_ALL:
        # local/dev convenience; deployed databases are migrated with alembic
        async with async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    app.state.attempt_limiter = AttemptLimiter(config_settings.VERIFY_MAX_ATTEMPTS, config_settings.VERIFY_WINDOW_SECONDS)
    app.state.webhook_limiter = AttemptLimiter(config_settings.WEBHOOK_MAX_ATTEMPTS, config_settings.WEBHOOK_WINDOW_SECONDS)

    audit = AuditLogger(async_session,
                        max_queue_size=config_settings.AUDIT_QUEUE_MAXSIZE,
                        workers_count=config_settings.AUDIT_WORKERS)
    audit.start()
    app.state.audit = audit

    try:
        yield
    finally:
        # at this point new requests accept has been stopped already before calling shutdown
        await audit.shutdown()
        # safe to dispose DB engine after workers exit
        await async_engine.dispose()
        shutdown_logging()


def create_app():
    app=FastAPI(
        title=admin_config.SERVICE_NAME,
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(RateLimitMiddleware,
                       paths=[f"{version_prefix}/payments", f"{version_prefix}/webhooks"],
                       limit=config_settings.IP_RATE_LIMIT,
                       window=config_settings.IP_RATE_WINDOW,
                       enabled=config_settings.IP_RATE_LIMIT_ENABLED)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app=create_app()
