"""SQLAlchemy models for outbound activities and their per-inbox delivery state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    VARCHAR,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import utcnow

DELIVERY_PENDING = "pending"
DELIVERY_DELIVERED = "delivered"
DELIVERY_FAILED = "failed"
DELIVERY_DEAD = "dead"

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    DELIVERY_PENDING: frozenset({DELIVERY_DELIVERED, DELIVERY_FAILED, DELIVERY_DEAD}),
    DELIVERY_FAILED: frozenset({DELIVERY_DEAD}),
    DELIVERY_DELIVERED: frozenset(),
    DELIVERY_DEAD: frozenset(),
}


class OutboundActivity(Base):
    """An activity serialized once and fanned out to one or more inboxes."""

    __tablename__ = "activitypub_outbound_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activitypub_actors.id", ondelete="CASCADE"), nullable=False
    )
    activity_type: Mapped[str] = mapped_column(VARCHAR(32), nullable=False)  # e.g. 'Create'
    # Note or actor URI the activity is about; used to cancel on retraction.
    object_uri: Mapped[str | None] = mapped_column(String(512), nullable=True, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON body, sent verbatim
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class DeliveryLog(Base):
    """One delivery attempt series of an activity to a single inbox."""

    __tablename__ = "activitypub_delivery_logs"
    __table_args__ = (
        UniqueConstraint("activity_id", "target_inbox", name="uq_activitypub_delivery_target"),
        Index("ix_activitypub_delivery_due", "status", "next_retry_at"),
        Index("ix_activitypub_delivery_order", "local_actor_id", "target_domain", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[str] = mapped_column(
        String(512),
        ForeignKey("activitypub_outbound_activities.activity_id", ondelete="CASCADE"),
        nullable=False,
    )
    local_actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activitypub_actors.id", ondelete="CASCADE"), nullable=False
    )
    target_inbox: Mapped[str] = mapped_column(String(512), nullable=False)
    target_domain: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        VARCHAR(20), nullable=False, default=DELIVERY_PENDING
    )  # 'pending', 'delivered', 'failed', 'dead'
    attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_status_code: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def transition(self, new_status: str) -> bool:
        """Move to `new_status` if allowed; return whether the status changed."""
        if new_status == self.status:
            return False
        if new_status not in _ALLOWED_TRANSITIONS.get(self.status, frozenset()):
            raise ValueError(f"illegal delivery transition {self.status} -> {new_status}")
        self.status = new_status
        return True
