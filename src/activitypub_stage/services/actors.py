"""Actor Directory: provisioning and lookup of local ActivityPub actors."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import ActorNotFound
from activitypub_stage.core.security import generate_rsa_keypair
from activitypub_stage.models import Actor, ActorKind, Sub, User

logger = logging.getLogger(__name__)

KeypairFactory = Callable[[], tuple[str, str]]


class ActorDirectory:
    """Creates and resolves the instance, user and group actors.

    Provisioning never touches the network. Actors are keyed by
    `(kind, username)`; once an `actor_uri` is published it is reused on every
    later provision so remote servers keep a stable reference.
    """

    def __init__(
        self, config: FederationConfig, keypair_factory: KeypairFactory | None = None
    ) -> None:
        self.config = config
        self._keypair_factory = keypair_factory or generate_rsa_keypair

    def uris_for(self, kind: ActorKind, username: str) -> dict[str, str]:
        """Return the actor, inbox, outbox and followers URIs for a local actor."""
        base = self.config.actor_base_url
        return {
            "actor_uri": f"{base}{kind.actor_path(username)}",
            "inbox_uri": f"{base}{kind.collection_path(username, 'inbox')}",
            "outbox_uri": f"{base}{kind.collection_path(username, 'outbox')}",
            "followers_uri": f"{base}{kind.collection_path(username, 'followers')}",
        }

    @property
    def shared_inbox_uri(self) -> str:
        return f"{self.config.actor_base_url}/inbox"

    def resolve(self, db: Session, kind: ActorKind, identifier: str | None = None) -> Actor:
        """Return the active actor of `kind` named `identifier`.

        The identifier is ignored for the instance actor, which must already
        have been provisioned.

        Raises:
            ActorNotFound: No active actor matches.
        """
        if kind is ActorKind.INSTANCE:
            return self.instance_actor(db)
        if not identifier:
            raise ActorNotFound(f"{kind.value} identifier missing")

        actor = (
            db.query(Actor)
            .filter(Actor.kind == kind, Actor.username == identifier, Actor.is_active.is_(True))
            .first()
        )
        if actor is None:
            raise ActorNotFound(f"{kind.value} {identifier!r} not federated")
        return actor

    def resolve_uri(self, db: Session, actor_uri: str) -> Actor:
        """Return the active local actor published at `actor_uri`."""
        actor = (
            db.query(Actor)
            .filter(Actor.actor_uri == actor_uri, Actor.is_active.is_(True))
            .first()
        )
        if actor is None:
            raise ActorNotFound(actor_uri)
        return actor

    def find_for_entity(self, db: Session, kind: ActorKind, entity_id: int) -> Actor | None:
        """Return the actor (active or not) backing a user or sub, if any."""
        return (
            db.query(Actor)
            .filter(Actor.kind == kind, Actor.entity_id == entity_id)
            .first()
        )

    def find_instance_actor(self, db: Session) -> Actor | None:
        return db.query(Actor).filter(Actor.kind == ActorKind.INSTANCE).first()

    def instance_actor(self, db: Session) -> Actor:
        """Return the instance actor without creating it.

        Raises:
            ActorNotFound: `provision_instance` has not run yet.
        """
        actor = self.find_instance_actor(db)
        if actor is None:
            raise ActorNotFound("instance actor not provisioned")
        return actor

    def provision_instance(self, db: Session) -> Actor:
        """Return the instance actor, creating it and its keypair if missing."""
        actor = self.find_instance_actor(db)
        if actor is not None:
            return actor
        return self.create(
            db,
            ActorKind.INSTANCE,
            self.config.instance_username,
            display_name=self.config.instance_name,
            summary=f"Instance actor for {self.config.public_host}",
        )

    def create(
        self,
        db: Session,
        kind: ActorKind,
        identifier: str,
        *,
        entity_id: int | None = None,
        display_name: str | None = None,
        summary: str | None = None,
        icon_url: str | None = None,
    ) -> Actor:
        """Create the actor, or reactivate and refresh the existing one.

        Calling twice with the same arguments yields the same row; keys are
        only generated for new actors.
        """
        existing = (
            db.query(Actor).filter(Actor.kind == kind, Actor.username == identifier).first()
        )
        if existing is not None:
            existing.is_active = True
            if entity_id is not None:
                existing.entity_id = entity_id
            existing.display_name = display_name or existing.display_name
            existing.summary = summary if summary is not None else existing.summary
            existing.icon_url = icon_url if icon_url is not None else existing.icon_url
            db.flush()
            return existing

        private_pem, public_pem = self._keypair_factory()
        actor = Actor(
            kind=kind,
            entity_id=entity_id,
            username=identifier,
            display_name=display_name or identifier,
            summary=summary,
            icon_url=icon_url,
            public_key=public_pem,
            private_key=private_pem,
            key_version=1,
            is_active=True,
            **self.uris_for(kind, identifier),
        )
        db.add(actor)
        db.flush()
        logger.info("Provisioned %s actor %s", kind.value, actor.actor_uri)
        return actor

    def provision_user(self, db: Session, user: User) -> Actor:
        return self.create(
            db,
            ActorKind.USER,
            user.username,
            entity_id=user.id,
            display_name=user.display_name or user.username,
            summary=user.bio,
            icon_url=user.avatar_url,
        )

    def provision_group(self, db: Session, sub: Sub) -> Actor:
        return self.create(
            db,
            ActorKind.GROUP,
            sub.name,
            entity_id=sub.id,
            display_name=sub.display_name,
            summary=sub.description,
            icon_url=sub.icon_url,
        )

    def deactivate(self, db: Session, actor: Actor) -> None:
        """Stop serving the actor; its row and URIs are kept."""
        if not actor.is_active:
            return
        actor.is_active = False
        db.flush()
        logger.info("Deactivated %s actor %s", actor.kind.value, actor.actor_uri)

    def rotate_key(self, db: Session, actor: Actor) -> Actor:
        """Replace the actor's keypair and advertise it under a new key id."""
        private_pem, public_pem = self._keypair_factory()
        actor.private_key = private_pem
        actor.public_key = public_pem
        actor.key_version = (actor.key_version or 1) + 1
        db.flush()
        logger.info("Rotated key for %s, now %s", actor.actor_uri, actor.key_id)
        return actor
