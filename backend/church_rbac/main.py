import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from church_rbac.auth.engine import build_permission_engine
from church_rbac.config import settings
from church_rbac.middleware.exceptions import register_exception_handlers
from church_rbac.routers import health, permissions
from church_rbac.utils.cache import close_redis, get_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the invalidation listener on startup, stop it on shutdown."""
    bus = app.state.permission_engine.bus
    if bus is not None:
        bus.start()
        logger.info("Permission invalidation listener started")
    try:
        yield
    finally:
        if bus is not None:
            await bus.stop()
            logger.info("Permission invalidation listener stopped")
        if app.state.owns_redis:
            await close_redis()


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: redis.Redis | None = None,
) -> FastAPI:
    logging.basicConfig(level=settings.log_level.upper())

    if session_factory is None:
        from church_rbac.database import async_session
        session_factory = async_session

    owns_redis = False
    if redis_client is None and settings.redis_invalidation_enabled:
        redis_client = get_redis()
        owns_redis = True

    app = FastAPI(
        title="Church RBAC",
        description="Role and permission resolution for the church management platform",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.redis = redis_client
    app.state.owns_redis = owns_redis
    app.state.permission_engine = build_permission_engine(
        session_factory, settings, redis_client=redis_client
    )

    # ── Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Middleware ───────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])

    return app


app = create_app()
