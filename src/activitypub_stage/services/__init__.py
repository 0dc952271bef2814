# src/activitypub_stage/services/__init__.py
"""Federation services and their process-wide wiring."""

from .container import FederationServices, get_services, reset_services

__all__ = [
    "FederationServices",
    "get_services",
    "reset_services",
]
