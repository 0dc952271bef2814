# src/activitypub_stage/api/v1/endpoints/webfinger.py
"""WebFinger discovery endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from activitypub_stage.api.v1.dependencies import FederationDep, SessionDep
from activitypub_stage.api.v1.responses import JRDResponse
from activitypub_stage.core.errors import MalformedRequest

router = APIRouter(tags=["webfinger"])


@router.get("/.well-known/webfinger", response_class=JRDResponse)
async def webfinger(
    db: SessionDep,
    services: FederationDep,
    resource: str | None = None,
) -> JRDResponse:
    """Resolve an `acct:` or actor URL resource to its JRD document."""
    if not resource:
        raise MalformedRequest("missing resource")
    actor = services.webfinger.resolve(db, resource)
    return JRDResponse(
        services.webfinger.render(actor),
        headers={"Access-Control-Allow-Origin": "*"},
    )
