"""SQLAlchemy model for remote followers of local actors."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import utcnow


class Follower(Base):
    """Edge from a local actor to a remote actor following it.

    The remote URI is a reference only. The unique constraint is what keeps
    two near-simultaneous Follow activities from producing duplicate edges.
    """

    __tablename__ = "activitypub_followers"
    __table_args__ = (
        UniqueConstraint("actor_id", "follower_uri", name="uq_activitypub_followers_edge"),
        Index("ix_activitypub_followers_follower_uri", "follower_uri"),
        Index("ix_activitypub_followers_domain", "actor_id", "follower_domain"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("activitypub_actors.id", ondelete="CASCADE"),
        nullable=False,
    )
    follower_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    follower_inbox: Mapped[str] = mapped_column(String(512), nullable=False)
    follower_shared_inbox: Mapped[str | None] = mapped_column(String(512), nullable=True)
    follower_domain: Mapped[str] = mapped_column(String(255), nullable=False)
    follower_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accepted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def delivery_inbox(self) -> str:
        """Prefer the shared inbox so one POST reaches every follower on a host."""
        return self.follower_shared_inbox or self.follower_inbox
