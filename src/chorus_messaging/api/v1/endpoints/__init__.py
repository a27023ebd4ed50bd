# src/chorus_messaging/api/v1/endpoints/__init__.py
"""API endpoint routers."""

from .attachments import router as attachments_router
from .conversations import router as conversations_router
from .messages import router as messages_router
from .requests import blocks_router
from .requests import router as requests_router

__all__ = [
    "attachments_router",
    "blocks_router",
    "conversations_router",
    "messages_router",
    "requests_router",
]
