# src/activitypub_stage/models/post.py
"""SQLAlchemy model for posts as seen by the federation subsystem."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from activitypub_stage.models.community import Sub
    from activitypub_stage.models.user import User

POST_STATUS_DRAFT = "draft"
POST_STATUS_PUBLISHED = "published"
POST_STATUS_HIDDEN = "hidden"


class Post(Base):
    """Primary content entity produced by users.

    Only the fields the Note renderer and the eligibility gate need are
    mapped; post CRUD is owned by the content service.
    """

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    sub_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("subs.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=POST_STATUS_DRAFT)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Counters maintained from inbound Like / Announce / Create(Note) activities.
    federation_likes_count: Mapped[int] = mapped_column(default=0, nullable=False)
    federation_shares_count: Mapped[int] = mapped_column(default=0, nullable=False)
    federation_replies_count: Mapped[int] = mapped_column(default=0, nullable=False)

    user: Mapped[User] = relationship("User", lazy="joined")
    sub: Mapped[Sub | None] = relationship("Sub", lazy="joined")

    @property
    def is_published(self) -> bool:
        return self.status == POST_STATUS_PUBLISHED and self.deleted_at is None
