# src/activitypub_stage/schemas/__init__.py
"""Pydantic schemas for the settings and admin APIs."""

from .admin import (
    BlockedInstanceCreate,
    BlockedInstanceResponse,
    BlockStatusResponse,
    DeliveryStatsResponse,
    FederationStatsResponse,
    InstanceFailures,
    InstanceFollowers,
)
from .federation import (
    ActorSummary,
    AnnounceablePost,
    AnnounceableResponse,
    AnnounceResponse,
    FederationStatus,
    PostFederationSettingsResponse,
    PostFederationSettingsUpdate,
    PublicGroupActor,
    PublicUserActor,
    SubFederationSettingsResponse,
    SubFederationSettingsUpdate,
    UserFederationSettingsResponse,
    UserFederationSettingsUpdate,
)

__all__ = [
    "ActorSummary",
    "AnnounceResponse",
    "AnnounceablePost",
    "AnnounceableResponse",
    "BlockedInstanceCreate",
    "BlockStatusResponse",
    "BlockedInstanceResponse",
    "DeliveryStatsResponse",
    "FederationStatsResponse",
    "FederationStatus",
    "InstanceFailures",
    "InstanceFollowers",
    "PostFederationSettingsResponse",
    "PostFederationSettingsUpdate",
    "PublicGroupActor",
    "PublicUserActor",
    "SubFederationSettingsResponse",
    "SubFederationSettingsUpdate",
    "UserFederationSettingsResponse",
    "UserFederationSettingsUpdate",
]
