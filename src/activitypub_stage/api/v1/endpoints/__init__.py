# src/activitypub_stage/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .actors import router as actors_router
from .admin import router as admin_router
from .inbox import router as inbox_router
from .notes import router as notes_router
from .settings import router as settings_router
from .webfinger import router as webfinger_router

__all__ = [
    "actors_router",
    "admin_router",
    "inbox_router",
    "notes_router",
    "settings_router",
    "webfinger_router",
]
