# src/activitypub_stage/api/v1/endpoints/inbox.py
"""Inbox endpoints receiving signed activities from remote servers."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request, status

from activitypub_stage.api.v1.dependencies import FederationDep, SessionDep
from activitypub_stage.core.errors import BlockedInstanceError, MalformedRequest
from activitypub_stage.models import Actor, ActorKind
from activitypub_stage.services import FederationServices
from activitypub_stage.services.inbox import actor_of, bind_signature, validate_activity
from activitypub_stage.services.signatures import SignedRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/activitypub", tags=["activitypub"])

ACCEPTED = {"status": "ok"}


def _signed_request(request: Request, body: bytes) -> SignedRequest:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return SignedRequest(
        method=request.method,
        path=path,
        headers=dict(request.headers),
        body=body,
    )


async def _receive(
    request: Request,
    db: SessionDep,
    services: FederationServices,
    recipient: Actor | None,
) -> dict[str, str]:
    """Parse, authenticate and apply one inbound activity.

    Raises:
        MalformedRequest: Body is not a JSON activity.
        SignatureInvalid: Signature rejected while enforcement is on.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise MalformedRequest("body is not JSON") from err
    activity = validate_activity(payload)
    remote_actor = actor_of(activity)

    try:
        services.blocklist.ensure_allowed(db, remote_actor)
    except BlockedInstanceError as exc:
        logger.warning(
            "Dropping %s %s from blocked instance %s", activity["type"], activity.get("id"), exc.domain
        )
        return ACCEPTED

    result = await services.verifier.verify(_signed_request(request, body))
    result = bind_signature(result, activity)
    services.policy.apply(result, activity_id=activity.get("id"), actor_uri=remote_actor)

    outcome = services.inbox.process(db, recipient, activity, result)
    db.commit()
    logger.debug("Inbox %s %s: %s", activity["type"], activity.get("id"), outcome.value)
    return ACCEPTED


@router.post("/inbox", status_code=status.HTTP_202_ACCEPTED)
async def shared_inbox(request: Request, db: SessionDep, services: FederationDep) -> dict[str, str]:
    """Shared inbox; also the instance actor's inbox."""
    return await _receive(request, db, services, None)


@router.post("/users/{username}/inbox", status_code=status.HTTP_202_ACCEPTED)
async def user_inbox(
    username: str,
    request: Request,
    db: SessionDep,
    services: FederationDep,
) -> dict[str, str]:
    recipient = services.directory.resolve(db, ActorKind.USER, username)
    return await _receive(request, db, services, recipient)


@router.post("/groups/{name}/inbox", status_code=status.HTTP_202_ACCEPTED)
async def group_inbox(
    name: str,
    request: Request,
    db: SessionDep,
    services: FederationDep,
) -> dict[str, str]:
    recipient = services.directory.resolve(db, ActorKind.GROUP, name)
    return await _receive(request, db, services, recipient)
