# src/chorus_messaging/main.py
"""Main entry point for the Chorus messaging service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from chorus_messaging.api.v1 import (
    attachments_router,
    blocks_router,
    conversations_router,
    messages_router,
    requests_router,
)
from chorus_messaging.api.v1.dependencies import get_messaging_service
from chorus_messaging.core.settings import settings
from chorus_messaging.services.sweeper import EphemeralSweeper

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Conversations, message requests and unread accounting",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(conversations_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(requests_router, prefix="/api/v1")
app.include_router(blocks_router, prefix="/api/v1")
app.include_router(attachments_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.sweeper_enabled:
        sweeper = EphemeralSweeper(get_messaging_service())
        await sweeper.start()
        app.state.sweeper = sweeper
        logger.info("Ephemeral sweeper started (every %.0fs)", sweeper.interval_seconds)
    else:
        app.state.sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: EphemeralSweeper | None = getattr(app.state, "sweeper", None)
    if sweeper:
        await sweeper.stop()

@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}

@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chorus_messaging.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
