"""Inbound interactions from remote actors on local posts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import VARCHAR, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import utcnow

INTERACTION_LIKE = "like"
INTERACTION_ANNOUNCE = "announce"


class RemoteInteraction(Base):
    """A Like or Announce of a local post by a remote actor."""

    __tablename__ = "activitypub_remote_interactions"
    __table_args__ = (
        UniqueConstraint(
            "post_id", "remote_actor_uri", "kind", name="uq_activitypub_remote_interaction"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    remote_actor_uri: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(VARCHAR(16), nullable=False)  # 'like' | 'announce'
    activity_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class RemoteReply(Base):
    """Remote Note replying to a local post, imported from `Create(Note)`."""

    __tablename__ = "activitypub_remote_replies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_uri: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    remote_actor_uri: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
