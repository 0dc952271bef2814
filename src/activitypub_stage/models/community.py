"""SQLAlchemy models for subs (communities) and their moderators."""
from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base


class Sub(Base):
    """Community that can federate as a Group actor."""

    __tablename__ = "subs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Handle used in `!name@domain`.
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class SubModerator(Base):
    """Join table mapping moderators onto subs."""

    __tablename__ = "sub_moderators"

    sub_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subs.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
