"""Per-user, per-sub and per-post federation opt-in state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base


class UserFederationSettings(Base):
    """Opt-in configuration of a local user."""

    __tablename__ = "activitypub_user_settings"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    federation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Default `should_federate` for the user's new posts.
    default_federate_posts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    indexable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_followers_count: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SubFederationSettings(Base):
    """Moderator-controlled configuration of a sub's Group actor."""

    __tablename__ = "activitypub_sub_settings"

    sub_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subs.id", ondelete="CASCADE"), primary_key=True
    )
    federation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_announce: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    accept_remote_posts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PostFederationSettings(Base):
    """Author's per-post choice plus the resulting federation state."""

    __tablename__ = "activitypub_post_settings"

    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True
    )
    should_federate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_federated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    federated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    note_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    activity_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Incremented each time the post goes from unfederated to federated.
    publications: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
