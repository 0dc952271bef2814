# src/activitypub_stage/api/v1/endpoints/notes.py
"""Dereferenceable Notes and the activities that carried them."""

from __future__ import annotations

from fastapi import APIRouter

from activitypub_stage.api.v1.dependencies import FederationDep, SessionDep
from activitypub_stage.api.v1.responses import ActivityJSONResponse
from activitypub_stage.core.errors import NotEligible
from activitypub_stage.models import Post

router = APIRouter(prefix="/activitypub", tags=["activitypub"])


def _get_post(db: SessionDep, post_id: int) -> Post:
    post = db.get(Post, post_id)
    if post is None:
        raise NotEligible(f"post {post_id} does not exist")
    return post


@router.get("/notes/{post_id}", response_class=ActivityJSONResponse)
async def get_note(post_id: int, db: SessionDep, services: FederationDep) -> ActivityJSONResponse:
    """Return a federated post as a Note."""
    post = _get_post(db, post_id)
    return ActivityJSONResponse(services.collections.build_note_document(db, post))


@router.get("/posts/{post_id}", response_class=ActivityJSONResponse)
async def get_post_note(post_id: int, db: SessionDep, services: FederationDep) -> ActivityJSONResponse:
    """Alias of `/notes/{post_id}` kept for links published under the old path."""
    post = _get_post(db, post_id)
    return ActivityJSONResponse(services.collections.build_note_document(db, post))


@router.get("/activities/{post_id}", response_class=ActivityJSONResponse)
async def get_create_activity(
    post_id: int, db: SessionDep, services: FederationDep
) -> ActivityJSONResponse:
    post = _get_post(db, post_id)
    return ActivityJSONResponse(services.collections.build_create_activity(db, post))


@router.get("/activities/create/{post_id}", response_class=ActivityJSONResponse)
async def get_create_activity_by_id(
    post_id: int, db: SessionDep, services: FederationDep
) -> ActivityJSONResponse:
    """Return the Create activity at the id it was delivered with."""
    post = _get_post(db, post_id)
    return ActivityJSONResponse(services.collections.build_create_activity(db, post))


@router.get("/activities/announce/{post_id}", response_class=ActivityJSONResponse)
async def get_announce_activity(
    post_id: int, db: SessionDep, services: FederationDep
) -> ActivityJSONResponse:
    """Return the sub group's Announce of the post."""
    post = _get_post(db, post_id)
    if post.sub is None or not services.gate.can_announce(db, post, manual=True):
        raise NotEligible(f"post {post_id} is not announced")
    group = services.gate.group_actor(db, post.sub)
    if group is None:
        raise NotEligible(f"sub of post {post_id} has no active actor")
    return ActivityJSONResponse(services.collections.build_announce_activity(db, group, post))


def _current_publication(db: SessionDep, services: FederationDep, post: Post, publication: int) -> None:
    if publication != services.collections.current_publication(db, post):
        raise NotEligible(f"publication {publication} of post {post.id} was superseded")


@router.get("/activities/create/{post_id}/{publication}", response_class=ActivityJSONResponse)
async def get_republished_create_activity(
    post_id: int, publication: int, db: SessionDep, services: FederationDep
) -> ActivityJSONResponse:
    """Return the Create of a post that was retracted and federated again."""
    post = _get_post(db, post_id)
    _current_publication(db, services, post, publication)
    return ActivityJSONResponse(services.collections.build_create_activity(db, post))


@router.get("/activities/announce/{post_id}/{publication}", response_class=ActivityJSONResponse)
async def get_republished_announce_activity(
    post_id: int, publication: int, db: SessionDep, services: FederationDep
) -> ActivityJSONResponse:
    post = _get_post(db, post_id)
    _current_publication(db, services, post, publication)
    return await get_announce_activity(post_id, db, services)
