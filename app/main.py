"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import Database
from app.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.logging_config import configure_logging
from app.redis import RedisClient
from app.services.storage_service import configure_cloudinary

# Import routers - MUST BE AT TOP LEVEL
from app.api.webhooks.payrex import router as payrex_router
from app.api.orders import router as orders_router
from app.api.payments import router as payments_router
from app.api.settlements import router as settlements_router, riders_router
from app.api.uploads import router as uploads_router
from app.api.sync import router as sync_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging(settings)
    logger.info(f"Starting up {settings.app_name} ({settings.app_env})...")

    app.state.db = Database.from_settings(settings)
    if settings.is_development:
        await app.state.db.create_all()

    app.state.redis = RedisClient(settings.redis_url) if settings.redis_url else None
    if app.state.redis is None:
        logger.warning("REDIS_URL not set - webhook dedupe uses the database only")

    configure_cloudinary(settings)

    yield

    # Shutdown
    if app.state.redis:
        await app.state.redis.close()
    await app.state.db.dispose()
    logger.info("Shutting down...")


app = FastAPI(
    title="CODRider",
    description="COD rider logistics and payment reconciliation",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# CORS middleware
origins = []
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Register webhook routes
app.include_router(
    payrex_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

# Register rider / admin routes
app.include_router(orders_router, prefix="/orders", tags=["orders"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(settlements_router, prefix="/settlements", tags=["settlements"])
app.include_router(riders_router, prefix="/riders", tags=["settlements"])
app.include_router(uploads_router, prefix="/uploads", tags=["uploads"])
app.include_router(sync_router, prefix="/sync", tags=["sync"])
