"""Lookup and administration of blocked remote instances."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from activitypub_stage.core.errors import BlockedInstanceError
from activitypub_stage.db.time import utcnow
from activitypub_stage.models import BlockedInstance
from activitypub_stage.models.blocked_instance import BLOCK_FULL, BLOCK_SILENCE
from activitypub_stage.services.urls import host_of

logger = logging.getLogger(__name__)

BLOCK_TYPES = (BLOCK_FULL, BLOCK_SILENCE)


def normalize_domain(domain_or_url: str) -> str:
    """Lower-case host for a bare domain or a URL."""
    value = domain_or_url.strip()
    if "://" in value:
        return host_of(value)
    return value.split("/", 1)[0].split(":", 1)[0].lower()


class Blocklist:
    """Answers whether a domain is refused and manages block rows."""

    def is_blocked(self, db: Session, domain_or_url: str | None) -> bool:
        if not domain_or_url:
            return False
        domain = normalize_domain(domain_or_url)
        if not domain:
            return False
        row = db.query(BlockedInstance).filter(BlockedInstance.domain == domain).first()
        return row is not None and row.is_effective()

    def ensure_allowed(self, db: Session, domain_or_url: str | None) -> None:
        """Raise `BlockedInstanceError` when `domain_or_url` is blocked."""
        if self.is_blocked(db, domain_or_url):
            raise BlockedInstanceError(normalize_domain(domain_or_url or ""))

    def blocked_domains(self, db: Session, now: datetime | None = None) -> set[str]:
        """All domains currently blocked in full."""
        now = now or utcnow()
        rows = (
            db.query(BlockedInstance)
            .filter(BlockedInstance.active.is_(True), BlockedInstance.block_type == BLOCK_FULL)
            .all()
        )
        return {row.domain for row in rows if row.is_effective(now)}

    def block(
        self,
        db: Session,
        domain: str,
        *,
        reason: str | None = None,
        block_type: str = BLOCK_FULL,
        expires_at: datetime | None = None,
    ) -> BlockedInstance:
        if block_type not in BLOCK_TYPES:
            raise ValueError(f"unknown block type {block_type!r}")
        normalized = normalize_domain(domain)
        if not normalized:
            raise ValueError("domain is required")

        row = db.query(BlockedInstance).filter(BlockedInstance.domain == normalized).first()
        if row is None:
            row = BlockedInstance(domain=normalized)
            db.add(row)
        row.reason = reason
        row.block_type = block_type
        row.expires_at = expires_at
        row.active = True
        db.flush()
        logger.info("Blocked instance %s (%s)", normalized, block_type)
        return row

    def unblock(self, db: Session, domain: str) -> bool:
        """Deactivate the block; return False when none was active."""
        normalized = normalize_domain(domain)
        row = db.query(BlockedInstance).filter(BlockedInstance.domain == normalized).first()
        if row is None or not row.active:
            return False
        row.active = False
        db.flush()
        logger.info("Unblocked instance %s", normalized)
        return True

    def list_blocks(self, db: Session, include_inactive: bool = False) -> list[BlockedInstance]:
        query = db.query(BlockedInstance)
        if not include_inactive:
            query = query.filter(BlockedInstance.active.is_(True))
        return query.order_by(BlockedInstance.domain).all()
