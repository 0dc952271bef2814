# src/activitypub_stage/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    actors_router,
    admin_router,
    inbox_router,
    notes_router,
    settings_router,
    webfinger_router,
)

__all__ = [
    "actors_router",
    "admin_router",
    "inbox_router",
    "notes_router",
    "settings_router",
    "webfinger_router",
]
