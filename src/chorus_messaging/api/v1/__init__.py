# src/chorus_messaging/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    attachments_router,
    blocks_router,
    conversations_router,
    messages_router,
    requests_router,
)

__all__ = [
    "attachments_router",
    "blocks_router",
    "conversations_router",
    "messages_router",
    "requests_router",
]
