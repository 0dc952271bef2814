"""SQLAlchemy model for administratively blocked remote instances."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import VARCHAR, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from activitypub_stage.db.session import Base
from activitypub_stage.db.time import as_utc, utcnow

BLOCK_FULL = "full"
BLOCK_SILENCE = "silence"


class BlockedInstance(Base):
    """Remote domain refused for inbound and outbound federation."""

    __tablename__ = "activitypub_blocked_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stored lower-case, without port.
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_type: Mapped[str] = mapped_column(VARCHAR(16), nullable=False, default=BLOCK_FULL)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def is_effective(self, now: datetime | None = None) -> bool:
        """True when this row currently blocks federation with `domain`."""
        if not self.active or self.block_type != BLOCK_FULL:
            return False
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > (now or utcnow())
