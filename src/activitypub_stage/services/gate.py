"""Federation Settings Gate: eligibility checks and opt-in toggles."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from activitypub_stage.db.time import utcnow
from activitypub_stage.models import (
    Actor,
    ActorKind,
    Post,
    PostFederationSettings,
    Sub,
    SubFederationSettings,
    SubModerator,
    User,
    UserFederationSettings,
)
from activitypub_stage.services.actors import ActorDirectory

logger = logging.getLogger(__name__)


def user_settings(db: Session, user_id: int, *, create: bool = True) -> UserFederationSettings:
    """Return the user's settings row.

    With `create=False` a missing row is returned as an unsaved default so
    read paths never write.
    """
    row = db.get(UserFederationSettings, user_id)
    if row is None:
        row = UserFederationSettings(
            user_id=user_id,
            federation_enabled=False,
            default_federate_posts=False,
            indexable=True,
            show_followers_count=True,
        )
        if create:
            db.add(row)
            db.flush()
    return row


def sub_settings(db: Session, sub_id: int, *, create: bool = True) -> SubFederationSettings:
    row = db.get(SubFederationSettings, sub_id)
    if row is None:
        row = SubFederationSettings(
            sub_id=sub_id,
            federation_enabled=False,
            auto_announce=True,
            accept_remote_posts=False,
        )
        if create:
            db.add(row)
            db.flush()
    return row


def post_settings(db: Session, post: Post, *, create: bool = True) -> PostFederationSettings:
    """Return the post's settings; new rows inherit the author's default."""
    row = db.get(PostFederationSettings, post.id)
    if row is None:
        author_default = user_settings(db, post.user_id, create=False).default_federate_posts
        row = PostFederationSettings(
            post_id=post.id,
            should_federate=bool(author_default),
            is_federated=False,
        )
        if create:
            db.add(row)
            db.flush()
    return row


def is_sub_moderator(db: Session, user: User, sub: Sub) -> bool:
    if user.is_admin:
        return True
    return (
        db.query(SubModerator)
        .filter(SubModerator.sub_id == sub.id, SubModerator.user_id == user.id)
        .first()
        is not None
    )


class FederationGate:
    """Decides what may federate and owns the enable/disable transitions.

    Toggling `federation_enabled` through this class is the only path that
    provisions or deactivates actors.
    """

    def __init__(self, directory: ActorDirectory) -> None:
        self.directory = directory

    def can_federate(self, db: Session, post: Post) -> bool:
        if not post.is_published:
            return False
        if not post_settings(db, post, create=False).should_federate:
            return False
        if not user_settings(db, post.user_id, create=False).federation_enabled:
            return False
        if post.sub_id is not None:
            existing = db.get(SubFederationSettings, post.sub_id)
            if existing is not None and not existing.federation_enabled:
                return False
        return True

    def can_announce(self, db: Session, post: Post, *, manual: bool = False) -> bool:
        """Whether the post's sub may Announce it to the group's followers."""
        if post.sub_id is None or not self.can_federate(db, post):
            return False
        settings = sub_settings(db, post.sub_id, create=False)
        if not settings.federation_enabled:
            return False
        return manual or settings.auto_announce

    def user_actor(self, db: Session, user: User) -> Actor | None:
        """Active actor of an opted-in user, or None."""
        if not user_settings(db, user.id, create=False).federation_enabled:
            return None
        actor = self.directory.find_for_entity(db, ActorKind.USER, user.id)
        return actor if actor is not None and actor.is_active else None

    def group_actor(self, db: Session, sub: Sub) -> Actor | None:
        if not sub_settings(db, sub.id, create=False).federation_enabled:
            return None
        actor = self.directory.find_for_entity(db, ActorKind.GROUP, sub.id)
        return actor if actor is not None and actor.is_active else None

    def enable_user(self, db: Session, user: User) -> Actor:
        settings = user_settings(db, user.id)
        if not settings.federation_enabled:
            settings.federation_enabled = True
            settings.enabled_at = settings.enabled_at or utcnow()
            logger.info("Federation enabled for user %s", user.username)
        return self.directory.provision_user(db, user)

    def disable_user(self, db: Session, user: User) -> None:
        settings = user_settings(db, user.id)
        if settings.federation_enabled:
            settings.federation_enabled = False
            logger.info("Federation disabled for user %s", user.username)
        actor = self.directory.find_for_entity(db, ActorKind.USER, user.id)
        if actor is not None:
            self.directory.deactivate(db, actor)
        db.flush()

    def enable_sub(self, db: Session, sub: Sub) -> Actor:
        settings = sub_settings(db, sub.id)
        if not settings.federation_enabled:
            settings.federation_enabled = True
            settings.enabled_at = settings.enabled_at or utcnow()
            logger.info("Federation enabled for sub %s", sub.name)
        return self.directory.provision_group(db, sub)

    def disable_sub(self, db: Session, sub: Sub) -> None:
        settings = sub_settings(db, sub.id)
        if settings.federation_enabled:
            settings.federation_enabled = False
            logger.info("Federation disabled for sub %s", sub.name)
        actor = self.directory.find_for_entity(db, ActorKind.GROUP, sub.id)
        if actor is not None:
            self.directory.deactivate(db, actor)
        db.flush()
