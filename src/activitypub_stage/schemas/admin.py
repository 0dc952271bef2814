# src/activitypub_stage/schemas/admin.py
"""Schemas for federation administration endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BlockedInstanceCreate(BaseModel):
    """Schema for blocking a remote instance."""

    domain: str = Field(min_length=1, max_length=255)
    reason: str | None = None
    block_type: Literal["full", "silence"] = "full"
    expires_at: datetime | None = None


class BlockedInstanceResponse(BaseModel):
    """Schema for a blocked instance returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    domain: str
    reason: str | None
    block_type: str
    active: bool
    expires_at: datetime | None
    created_at: datetime


class DeliveryStatsResponse(BaseModel):
    """Delivery counters over a recent window."""

    period_hours: int
    total: int
    delivered: int
    failed: int
    dead: int
    pending: int
    success_rate: float


class InstanceFailures(BaseModel):
    domain: str
    failures: int


class FederationStatsResponse(BaseModel):
    """Schema for the admin federation dashboard."""

    deliveries: DeliveryStatsResponse
    failures_by_instance: list[InstanceFailures]
    followers: int
    active_actors: int
    blocked_instances: int


class BlockStatusResponse(BaseModel):
    domain: str
    is_blocked: bool


class InstanceFollowers(BaseModel):
    domain: str
    followers: int
