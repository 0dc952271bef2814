"""Remote interactions with local posts: likes, boosts and replies."""

from __future__ import annotations

import logging
import re
from typing import Any

from bs4 import BeautifulSoup
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.models import Post, RemoteInteraction, RemoteReply
from activitypub_stage.models.interaction import INTERACTION_ANNOUNCE, INTERACTION_LIKE
from activitypub_stage.services.gate import FederationGate

logger = logging.getLogger(__name__)

MAX_REPLY_LENGTH = 10000

_COUNTERS = {
    INTERACTION_LIKE: "federation_likes_count",
    INTERACTION_ANNOUNCE: "federation_shares_count",
}


def object_uri(value: Any) -> str | None:
    """The `id` of an embedded object, or the value itself when it is a URI."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        inner = value.get("id")
        return inner if isinstance(inner, str) and inner else None
    return None


def html_to_text(markup: str) -> str:
    """Plain text of remote HTML content, keeping paragraph breaks."""
    soup = BeautifulSoup(markup or "", "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for paragraph in soup.find_all("p"):
        paragraph.append("\n\n")
    text = soup.get_text().strip()
    if len(text) > MAX_REPLY_LENGTH:
        text = text[:MAX_REPLY_LENGTH] + "..."
    return text


class InteractionService:
    """Applies Like, Announce and reply activities to local posts.

    Each interaction is keyed by `(post, remote actor, kind)` so re-delivery
    never double counts.
    """

    def __init__(self, config: FederationConfig, gate: FederationGate) -> None:
        self.config = config
        self.gate = gate
        base = re.escape(config.actor_base_url)
        self._by_id = re.compile(rf"^{base}/(?:notes|posts|activities/create)/(\d+)(?:[#/?].*)?$")
        self._by_slug = re.compile(rf"^{re.escape(config.client_url)}/posts?/([^/#?]+)/?$")

    def find_post(self, db: Session, uri: str | None) -> Post | None:
        """Map a note, activity or web URL of ours back to the post."""
        if not uri:
            return None
        match = self._by_id.match(uri)
        if match:
            return db.get(Post, int(match.group(1)))
        match = self._by_slug.match(uri)
        if match:
            return db.query(Post).filter(Post.slug == match.group(1)).first()
        return None

    def _federating_post(self, db: Session, uri: str | None) -> Post | None:
        post = self.find_post(db, uri)
        if post is None:
            logger.debug("Interaction with unknown object %s", uri)
            return None
        if not self.gate.can_federate(db, post):
            logger.debug("Interaction with non-federating post %s", post.id)
            return None
        return post

    def register(
        self,
        db: Session,
        kind: str,
        remote_actor_uri: str,
        target_uri: str | None,
        activity_uri: str | None = None,
    ) -> bool:
        """Record a Like or Announce; False when ignored or already counted."""
        post = self._federating_post(db, target_uri)
        if post is None:
            return False

        existing = (
            db.query(RemoteInteraction)
            .filter(
                RemoteInteraction.post_id == post.id,
                RemoteInteraction.remote_actor_uri == remote_actor_uri,
                RemoteInteraction.kind == kind,
            )
            .first()
        )
        if existing is not None:
            return False

        try:
            with db.begin_nested():
                db.add(
                    RemoteInteraction(
                        post_id=post.id,
                        remote_actor_uri=remote_actor_uri,
                        kind=kind,
                        activity_uri=activity_uri,
                    )
                )
        except IntegrityError:
            return False

        counter = _COUNTERS[kind]
        setattr(post, counter, (getattr(post, counter) or 0) + 1)
        db.flush()
        logger.info("%s received for post %s from %s", kind.capitalize(), post.id, remote_actor_uri)
        return True

    def undo(self, db: Session, kind: str, remote_actor_uri: str, target_uri: str | None) -> bool:
        """Remove a counted interaction; a missing one is a no-op."""
        post = self.find_post(db, target_uri)
        if post is None:
            return False
        row = (
            db.query(RemoteInteraction)
            .filter(
                RemoteInteraction.post_id == post.id,
                RemoteInteraction.remote_actor_uri == remote_actor_uri,
                RemoteInteraction.kind == kind,
            )
            .first()
        )
        if row is None:
            return False
        self.undo_row(db, row)
        logger.info("Undo %s for post %s from %s", kind, post.id, remote_actor_uri)
        return True

    def import_reply(self, db: Session, remote_actor_uri: str, note: dict[str, Any]) -> bool:
        """Store a remote Note that replies to a local post."""
        post = self._federating_post(db, object_uri(note.get("inReplyTo")))
        if post is None:
            return False

        source_uri = object_uri(note.get("id"))
        if source_uri is None:
            return False
        if db.query(RemoteReply).filter(RemoteReply.source_uri == source_uri).first():
            return False

        attributed = object_uri(note.get("attributedTo"))
        if attributed is not None and attributed != remote_actor_uri:
            logger.warning(
                "Reply %s attributed to %s but sent by %s", source_uri, attributed, remote_actor_uri
            )
            return False

        content = html_to_text(note.get("content") or "")
        if not content:
            logger.debug("Reply %s has no content", source_uri)
            return False

        try:
            with db.begin_nested():
                db.add(
                    RemoteReply(
                        source_uri=source_uri,
                        post_id=post.id,
                        remote_actor_uri=remote_actor_uri,
                        content=content,
                    )
                )
        except IntegrityError:
            return False

        post.federation_replies_count = (post.federation_replies_count or 0) + 1
        db.flush()
        logger.info("Reply %s imported for post %s", source_uri, post.id)
        return True

    def delete_reply(self, db: Session, remote_actor_uri: str, source_uri: str) -> bool:
        """Remove an imported reply when its author deletes it."""
        reply = (
            db.query(RemoteReply)
            .filter(
                RemoteReply.source_uri == source_uri,
                RemoteReply.remote_actor_uri == remote_actor_uri,
            )
            .first()
        )
        if reply is None:
            return False
        post = db.get(Post, reply.post_id)
        db.delete(reply)
        if post is not None:
            post.federation_replies_count = max(0, (post.federation_replies_count or 0) - 1)
        db.flush()
        logger.info("Reply %s deleted by %s", source_uri, remote_actor_uri)
        return True

    def purge_actor(self, db: Session, remote_actor_uri: str) -> int:
        """Drop every interaction and reply of a deleted remote actor."""
        removed = 0
        for row in (
            db.query(RemoteInteraction)
            .filter(RemoteInteraction.remote_actor_uri == remote_actor_uri)
            .all()
        ):
            self.undo_row(db, row)
            removed += 1
        for reply in (
            db.query(RemoteReply).filter(RemoteReply.remote_actor_uri == remote_actor_uri).all()
        ):
            if self.delete_reply(db, remote_actor_uri, reply.source_uri):
                removed += 1
        return removed

    def undo_row(self, db: Session, row: RemoteInteraction) -> None:
        post = db.get(Post, row.post_id)
        db.delete(row)
        if post is not None:
            counter = _COUNTERS[row.kind]
            setattr(post, counter, max(0, (getattr(post, counter) or 0) - 1))
        db.flush()
