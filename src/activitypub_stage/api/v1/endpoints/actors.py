# src/activitypub_stage/api/v1/endpoints/actors.py
"""Actor documents and their outbox/followers collections."""

from __future__ import annotations

from fastapi import APIRouter

from activitypub_stage.api.v1.dependencies import FederationDep, SessionDep
from activitypub_stage.api.v1.responses import ActivityJSONResponse
from activitypub_stage.models import ActorKind

router = APIRouter(prefix="/activitypub", tags=["activitypub"])


@router.get("/actor", response_class=ActivityJSONResponse)
async def instance_actor(db: SessionDep, services: FederationDep) -> ActivityJSONResponse:
    """Return the instance-wide Application actor."""
    actor = services.directory.instance_actor(db)
    return ActivityJSONResponse(services.collections.build_actor(db, actor))


@router.get("/outbox", response_class=ActivityJSONResponse)
async def instance_outbox(db: SessionDep, services: FederationDep) -> ActivityJSONResponse:
    actor = services.directory.instance_actor(db)
    return ActivityJSONResponse(services.collections.build_outbox(actor))


@router.get("/followers", response_class=ActivityJSONResponse)
async def instance_followers(db: SessionDep, services: FederationDep) -> ActivityJSONResponse:
    actor = services.directory.instance_actor(db)
    return ActivityJSONResponse(services.collections.build_followers(db, actor))


@router.get("/users/{username}", response_class=ActivityJSONResponse)
async def user_actor(
    username: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    """Return the Person document of a user who enabled federation."""
    actor = services.directory.resolve(db, ActorKind.USER, username)
    return ActivityJSONResponse(services.collections.build_actor(db, actor))


@router.get("/users/{username}/outbox", response_class=ActivityJSONResponse)
async def user_outbox(
    username: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    actor = services.directory.resolve(db, ActorKind.USER, username)
    return ActivityJSONResponse(services.collections.build_outbox(actor))


@router.get("/users/{username}/followers", response_class=ActivityJSONResponse)
async def user_followers(
    username: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    actor = services.directory.resolve(db, ActorKind.USER, username)
    return ActivityJSONResponse(services.collections.build_followers(db, actor))


@router.get("/groups/{name}", response_class=ActivityJSONResponse)
async def group_actor(
    name: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    """Return the Group document of a sub that enabled federation."""
    actor = services.directory.resolve(db, ActorKind.GROUP, name)
    return ActivityJSONResponse(services.collections.build_actor(db, actor))


@router.get("/groups/{name}/outbox", response_class=ActivityJSONResponse)
async def group_outbox(
    name: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    actor = services.directory.resolve(db, ActorKind.GROUP, name)
    return ActivityJSONResponse(services.collections.build_outbox(actor))


@router.get("/groups/{name}/followers", response_class=ActivityJSONResponse)
async def group_followers(
    name: str,
    db: SessionDep,
    services: FederationDep,
) -> ActivityJSONResponse:
    actor = services.directory.resolve(db, ActorKind.GROUP, name)
    return ActivityJSONResponse(services.collections.build_followers(db, actor))
