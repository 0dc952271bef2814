# src/activitypub_stage/models/actor.py
"""SQLAlchemy model for local ActivityPub actors.

One table holds every local actor. The `kind` column is a tagged variant:
`ActorKind` carries the per-kind behaviour (ActivityStreams type, URL path,
WebFinger prefix) so callers never branch on the kind themselves.
"""

from __future__ import annotations

import enum
from datetime import datetime
from urllib.parse import urlparse

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import utcnow


class ActorKind(str, enum.Enum):
    """Kinds of local actors addressable through federation."""

    INSTANCE = "instance"
    USER = "user"
    GROUP = "group"

    @property
    def activitypub_type(self) -> str:
        return _ACTIVITYPUB_TYPES[self]

    @property
    def handle_prefix(self) -> str:
        """Prefix used in `acct:` resources and display handles."""
        return "!" if self is ActorKind.GROUP else ""

    def actor_path(self, username: str | None) -> str:
        """Path of the actor document relative to the ActivityPub base URL."""
        if self is ActorKind.INSTANCE:
            return "/actor"
        if self is ActorKind.USER:
            return f"/users/{username}"
        return f"/groups/{username}"

    def collection_path(self, username: str | None, collection: str) -> str:
        """Path of inbox/outbox/followers for this kind."""
        if self is ActorKind.INSTANCE:
            return f"/{collection}"
        return f"{self.actor_path(username)}/{collection}"


_ACTIVITYPUB_TYPES = {
    ActorKind.INSTANCE: "Application",
    ActorKind.USER: "Person",
    ActorKind.GROUP: "Group",
}


class Actor(Base):
    """Federation-addressable identity with its RSA keypair.

    `actor_uri` never changes once published; actors are deactivated, never
    deleted, so federation partners keep a stable reference.
    """

    __tablename__ = "activitypub_actors"
    __table_args__ = (
        UniqueConstraint("kind", "entity_id", name="uq_activitypub_actors_kind_entity"),
        UniqueConstraint("kind", "username", name="uq_activitypub_actors_kind_username"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[ActorKind] = mapped_column(
        Enum(
            ActorKind,
            native_enum=False,
            length=16,
            values_callable=lambda kinds: [kind.value for kind in kinds],
        ),
        nullable=False,
    )
    # users.id or subs.id; NULL for the instance actor.
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor_uri: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    inbox_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    outbox_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    followers_uri: Mapped[str] = mapped_column(String(512), nullable=False)

    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    # Never serialized outward.
    private_key: Mapped[str] = mapped_column(Text, nullable=False)
    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def key_id(self) -> str:
        """Public key identifier advertised in the actor document."""
        if self.key_version <= 1:
            return f"{self.actor_uri}#main-key"
        return f"{self.actor_uri}#main-key-{self.key_version}"

    @property
    def host(self) -> str:
        return urlparse(self.actor_uri).hostname or ""

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Actor {self.kind.value}:{self.username} {self.actor_uri}>"
