# src/activitypub_stage/api/v1/endpoints/admin.py
"""Administrator endpoints for federation health and instance blocks."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Response, status
from sqlalchemy import func

from activitypub_stage.api.v1.dependencies import AdminUserDep, ServicesDep, SessionDep
from activitypub_stage.models import Actor, BlockedInstance, Follower
from activitypub_stage.schemas.admin import (
    BlockedInstanceCreate,
    BlockedInstanceResponse,
    BlockStatusResponse,
    DeliveryStatsResponse,
    FederationStatsResponse,
    InstanceFailures,
    InstanceFollowers,
)
from activitypub_stage.services.blocklist import normalize_domain

router = APIRouter(prefix="/admin/federation", tags=["admin", "federation"])


@router.get("/stats", response_model=FederationStatsResponse)
async def federation_stats(
    _admin: AdminUserDep,
    db: SessionDep,
    services: ServicesDep,
    hours: int = Query(default=24, ge=1, le=24 * 30),
) -> FederationStatsResponse:
    """Delivery counters and follower totals for the dashboard."""
    delivery = services.delivery
    return FederationStatsResponse(
        deliveries=DeliveryStatsResponse(**delivery.stats(db, hours)),
        failures_by_instance=[
            InstanceFailures(**row) for row in delivery.failures_by_instance(db, hours)
        ],
        followers=db.query(func.count(Follower.id)).scalar() or 0,
        active_actors=(
            db.query(func.count(Actor.id)).filter(Actor.is_active.is_(True)).scalar() or 0
        ),
        blocked_instances=len(services.blocklist.list_blocks(db)),
    )


@router.get("/stats/instances", response_model=list[InstanceFollowers])
async def followers_by_instance(
    _admin: AdminUserDep,
    db: SessionDep,
    limit: int = Query(default=20, ge=1, le=200),
) -> list[InstanceFollowers]:
    rows = (
        db.query(Follower.follower_domain, func.count(Follower.id))
        .group_by(Follower.follower_domain)
        .order_by(func.count(Follower.id).desc())
        .limit(limit)
        .all()
    )
    return [InstanceFollowers(domain=domain, followers=count) for domain, count in rows]


@router.get("/blocked-instances", response_model=list[BlockedInstanceResponse])
async def list_blocked_instances(
    _admin: AdminUserDep,
    db: SessionDep,
    services: ServicesDep,
    include_inactive: bool = False,
) -> list[BlockedInstance]:
    return services.blocklist.list_blocks(db, include_inactive)


@router.get("/blocked-instances/check", response_model=BlockStatusResponse)
async def check_blocked_instance(
    domain: str,
    _admin: AdminUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> BlockStatusResponse:
    normalized = normalize_domain(domain)
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid domain format",
        )
    return BlockStatusResponse(
        domain=normalized,
        is_blocked=services.blocklist.is_blocked(db, normalized),
    )


@router.post(
    "/blocked-instances",
    response_model=BlockedInstanceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def block_instance(
    block: BlockedInstanceCreate,
    _admin: AdminUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> BlockedInstance:
    """Block a remote instance; pending deliveries to it die on their next attempt."""
    try:
        row = services.blocklist.block(
            db,
            block.domain,
            reason=block.reason,
            block_type=block.block_type,
            expires_at=block.expires_at,
        )
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(err),
        ) from err
    db.commit()
    db.refresh(row)
    return row


@router.delete("/blocked-instances/{domain}", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_instance(
    domain: str,
    _admin: AdminUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> Response:
    if not services.blocklist.unblock(db, domain):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instance is not blocked",
        )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
