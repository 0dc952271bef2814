# src/activitypub_stage/api/v1/endpoints/settings.py
"""Federation settings API for users, posts and subs."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import or_

from activitypub_stage.api.v1.dependencies import CurrentUserDep, ServicesDep, SessionDep
from activitypub_stage.models import (
    Actor,
    ActorKind,
    Post,
    PostFederationSettings,
    Sub,
    User,
)
from activitypub_stage.models.post import POST_STATUS_PUBLISHED
from activitypub_stage.schemas.federation import (
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
from activitypub_stage.services import FederationServices
from activitypub_stage.services.gate import (
    is_sub_moderator,
    post_settings,
    sub_settings,
    user_settings,
)

router = APIRouter(prefix="/activitypub", tags=["activitypub-settings"])

ANNOUNCEABLE_LIMIT = 50


def _actor_summary(
    db: SessionDep, services: FederationServices, actor: Actor | None
) -> ActorSummary | None:
    if actor is None or not actor.is_active:
        return None
    return ActorSummary(
        uri=actor.actor_uri,
        handle=services.webfinger.handle(actor),
        followers=services.collections.follower_count(db, actor),
    )


def _user_response(
    db: SessionDep, services: FederationServices, user: User
) -> UserFederationSettingsResponse:
    settings = user_settings(db, user.id, create=False)
    actor = services.directory.find_for_entity(db, ActorKind.USER, user.id)
    return UserFederationSettingsResponse(
        federation_enabled=settings.federation_enabled,
        federation_enabled_at=settings.enabled_at,
        default_federate_posts=settings.default_federate_posts,
        indexable=settings.indexable,
        show_followers_count=settings.show_followers_count,
        actor=_actor_summary(db, services, actor),
    )


def _get_owned_post(db: SessionDep, post_id: int, user: User) -> Post:
    post = db.get(Post, post_id)
    if post is None or post.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    if post.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the author can change federation of a post",
        )
    return post


def _post_response(
    db: SessionDep, services: FederationServices, post: Post
) -> PostFederationSettingsResponse:
    settings = post_settings(db, post, create=False)
    return PostFederationSettingsResponse(
        post_id=post.id,
        should_federate=settings.should_federate,
        is_federated=settings.is_federated,
        federated_at=settings.federated_at,
        note_uri=settings.note_uri,
        can_federate=services.gate.can_federate(db, post),
    )


def _get_moderated_sub(db: SessionDep, sub_id: int, user: User) -> Sub:
    sub = db.get(Sub, sub_id)
    if sub is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sub not found")
    if not is_sub_moderator(db, user, sub):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only moderators can manage sub federation",
        )
    return sub


def _sub_response(
    db: SessionDep, services: FederationServices, sub: Sub
) -> SubFederationSettingsResponse:
    settings = sub_settings(db, sub.id, create=False)
    actor = services.directory.find_for_entity(db, ActorKind.GROUP, sub.id)
    return SubFederationSettingsResponse(
        sub_id=sub.id,
        federation_enabled=settings.federation_enabled,
        federation_enabled_at=settings.enabled_at,
        auto_announce=settings.auto_announce,
        accept_remote_posts=settings.accept_remote_posts,
        actor=_actor_summary(db, services, actor),
    )


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


# -- user settings -------------------------------------------------------------


@router.get("/settings", response_model=UserFederationSettingsResponse)
async def get_user_settings(
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> UserFederationSettingsResponse:
    """Return the caller's federation preferences."""
    return _user_response(db, services, current_user)


@router.patch("/settings", response_model=UserFederationSettingsResponse)
async def update_user_settings(
    update: UserFederationSettingsUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> UserFederationSettingsResponse:
    """Update the caller's preferences; toggling federation (de)activates the actor."""
    if update.federation_enabled is True:
        services.gate.enable_user(db, current_user)
    elif update.federation_enabled is False:
        services.gate.disable_user(db, current_user)

    settings = user_settings(db, current_user.id)
    if update.default_federate_posts is not None:
        settings.default_federate_posts = update.default_federate_posts
    if update.indexable is not None:
        settings.indexable = update.indexable
    if update.show_followers_count is not None:
        settings.show_followers_count = update.show_followers_count
    db.commit()
    return _user_response(db, services, current_user)


# -- post settings -------------------------------------------------------------


@router.get("/posts/{post_id}/settings", response_model=PostFederationSettingsResponse)
async def get_post_settings(
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> PostFederationSettingsResponse:
    post = _get_owned_post(db, post_id, current_user)
    return _post_response(db, services, post)


@router.patch("/posts/{post_id}/settings", response_model=PostFederationSettingsResponse)
async def update_post_settings(
    post_id: int,
    update: PostFederationSettingsUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> PostFederationSettingsResponse:
    """Opt a post in or out; opting out of a federated post retracts it."""
    post = _get_owned_post(db, post_id, current_user)
    settings = post_settings(db, post)
    was_federated = settings.is_federated
    settings.should_federate = update.should_federate
    db.flush()

    if update.should_federate and not was_federated:
        services.publisher.publish_post(db, post)
    elif not update.should_federate and was_federated:
        services.publisher.retract_post(db, post)
    db.commit()
    return _post_response(db, services, post)


# -- sub settings --------------------------------------------------------------


@router.get("/subs/{sub_id}/settings", response_model=SubFederationSettingsResponse)
async def get_sub_settings(
    sub_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> SubFederationSettingsResponse:
    sub = _get_moderated_sub(db, sub_id, current_user)
    return _sub_response(db, services, sub)


@router.patch("/subs/{sub_id}/settings", response_model=SubFederationSettingsResponse)
async def update_sub_settings(
    sub_id: int,
    update: SubFederationSettingsUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> SubFederationSettingsResponse:
    sub = _get_moderated_sub(db, sub_id, current_user)
    if update.federation_enabled is True:
        services.gate.enable_sub(db, sub)
    elif update.federation_enabled is False:
        services.gate.disable_sub(db, sub)

    if update.auto_announce is not None:
        sub_settings(db, sub.id).auto_announce = update.auto_announce
    db.commit()
    return _sub_response(db, services, sub)


@router.post("/subs/{sub_id}/announce/{post_id}", response_model=AnnounceResponse)
async def announce_post(
    sub_id: int,
    post_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    services: ServicesDep,
) -> AnnounceResponse:
    """Queue a moderator-initiated Announce of a sub post."""
    sub = _get_moderated_sub(db, sub_id, current_user)
    post = db.get(Post, post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    if post.sub_id != sub.id:
        raise _bad_request("Post does not belong to this sub")
    if not sub_settings(db, sub.id, create=False).federation_enabled:
        raise _bad_request("Federation is not enabled for this sub")
    if not post.is_published:
        raise _bad_request("Only published posts can be announced")
    existing = db.get(PostFederationSettings, post.id)
    if existing is not None and not existing.should_federate:
        raise _bad_request("Post author has disabled federation for this post")

    if services.publisher.announce_post(db, post, manual=True) is None:
        raise _bad_request("Post is not eligible for federation")
    db.commit()
    return AnnounceResponse(
        message="Post announcement queued successfully",
        post_id=post.id,
        sub_id=sub.id,
    )


@router.get("/subs/{sub_id}/announceable", response_model=AnnounceableResponse)
async def announceable_posts(
    sub_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> AnnounceableResponse:
    """Published posts of the sub that have not been federated yet."""
    sub = _get_moderated_sub(db, sub_id, current_user)
    posts = (
        db.query(Post)
        .outerjoin(PostFederationSettings, PostFederationSettings.post_id == Post.id)
        .filter(
            Post.sub_id == sub.id,
            Post.status == POST_STATUS_PUBLISHED,
            Post.deleted_at.is_(None),
            or_(
                PostFederationSettings.post_id.is_(None),
                PostFederationSettings.is_federated.is_(False),
            ),
        )
        .order_by(Post.created_at.desc())
        .limit(ANNOUNCEABLE_LIMIT)
        .all()
    )
    return AnnounceableResponse(
        posts=[
            AnnounceablePost(
                id=post.id,
                title=post.title,
                slug=post.slug,
                published_at=post.published_at,
            )
            for post in posts
        ]
    )


# -- public actor info ---------------------------------------------------------


@router.get("/status", response_model=FederationStatus)
async def federation_status(db: SessionDep, services: ServicesDep) -> FederationStatus:
    """Public summary of the instance actor."""
    if not services.config.enabled:
        return FederationStatus(enabled=False, actor=None, username=None, followers=0)
    actor = services.directory.find_instance_actor(db)
    if actor is None:
        return FederationStatus(enabled=True, actor=None, username=None, followers=0)
    return FederationStatus(
        enabled=True,
        actor=actor.actor_uri,
        username=actor.username,
        followers=services.collections.follower_count(db, actor),
    )


@router.get("/users/{username}", response_model=PublicUserActor)
async def public_user_actor(
    username: str,
    db: SessionDep,
    services: ServicesDep,
) -> PublicUserActor:
    actor = services.directory.resolve(db, ActorKind.USER, username)
    followers: int | None = None
    if actor.entity_id is None or user_settings(db, actor.entity_id, create=False).show_followers_count:
        followers = services.collections.follower_count(db, actor)
    return PublicUserActor(
        username=actor.username,
        name=actor.display_name or actor.username,
        handle=services.webfinger.handle(actor),
        uri=actor.actor_uri,
        followers=followers,
        icon=actor.icon_url,
    )


@router.get("/groups/{name}", response_model=PublicGroupActor)
async def public_group_actor(
    name: str,
    db: SessionDep,
    services: ServicesDep,
) -> PublicGroupActor:
    actor = services.directory.resolve(db, ActorKind.GROUP, name)
    return PublicGroupActor(
        name=actor.username,
        display_name=actor.display_name or actor.username,
        handle=services.webfinger.handle(actor),
        uri=actor.actor_uri,
        followers=services.collections.follower_count(db, actor),
        icon=actor.icon_url,
    )
