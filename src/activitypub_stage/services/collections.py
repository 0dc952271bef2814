"""Collection Builder: ActivityStreams documents served to and sent to remote servers.

Every builder is read-only. Note and activity builders refuse posts that are
not federation-eligible with `NotEligible`, which the HTTP layer reports as a
plain 404.
"""

from __future__ import annotations

import html
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import NotEligible
from activitypub_stage.db.time import as_utc, utcnow
from activitypub_stage.models import Actor, ActorKind, Follower, Post
from activitypub_stage.services.actors import ActorDirectory
from activitypub_stage.services.gate import FederationGate, post_settings, user_settings

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"
PUBLIC = "https://www.w3.org/ns/activitystreams#Public"
ACTOR_CONTEXT: list[Any] = [
    AS_CONTEXT,
    SECURITY_CONTEXT,
    {"discoverable": "toot:discoverable", "toot": "http://joinmastodon.org/ns#"},
]
EXCERPT_LENGTH = 500


def iso(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m-%dT%H:%M:%SZ")


def excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    """Trim `text` to `limit` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


class CollectionBuilder:
    def __init__(
        self,
        config: FederationConfig,
        directory: ActorDirectory,
        gate: FederationGate,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.directory = directory
        self.gate = gate
        self._clock = clock or utcnow

    # -- URIs -----------------------------------------------------------------

    def note_uri(self, post_id: int) -> str:
        return f"{self.config.actor_base_url}/notes/{post_id}"

    def _activity_uri(self, kind: str, post_id: int, publication: int) -> str:
        uri = f"{self.config.actor_base_url}/activities/{kind}/{post_id}"
        # The first publication keeps the bare path; republications are suffixed.
        if publication > 1:
            uri = f"{uri}/{publication}"
        return uri

    def create_activity_uri(self, post_id: int, publication: int = 1) -> str:
        return self._activity_uri("create", post_id, publication)

    def announce_activity_uri(self, post_id: int, publication: int = 1) -> str:
        return self._activity_uri("announce", post_id, publication)

    def current_publication(self, db: Session, post: Post) -> int:
        return max(post_settings(db, post, create=False).publications or 0, 1)

    def post_url(self, post: Post) -> str:
        return f"{self.config.client_url}/posts/{post.slug}"

    # -- actors and collections ---------------------------------------------

    def _discoverable(self, db: Session, actor: Actor) -> bool:
        if actor.kind is ActorKind.USER and actor.entity_id is not None:
            return user_settings(db, actor.entity_id, create=False).indexable
        return True

    def _shows_follower_count(self, db: Session, actor: Actor) -> bool:
        if actor.kind is ActorKind.USER and actor.entity_id is not None:
            return user_settings(db, actor.entity_id, create=False).show_followers_count
        return True

    def follower_count(self, db: Session, actor: Actor) -> int:
        return (
            db.query(func.count(Follower.id)).filter(Follower.actor_id == actor.id).scalar() or 0
        )

    def build_actor(self, db: Session, actor: Actor) -> dict[str, Any]:
        document: dict[str, Any] = {
            "@context": ACTOR_CONTEXT,
            "id": actor.actor_uri,
            "type": actor.kind.activitypub_type,
            "preferredUsername": actor.username,
            "name": actor.display_name or actor.username,
            "inbox": actor.inbox_uri,
            "outbox": actor.outbox_uri,
            "followers": actor.followers_uri,
        }
        if actor.summary is not None:
            document["summary"] = actor.summary
        if actor.icon_url:
            document["icon"] = {"type": "Image", "mediaType": "image/png", "url": actor.icon_url}
        document["publicKey"] = {
            "id": actor.key_id,
            "owner": actor.actor_uri,
            "publicKeyPem": actor.public_key,
        }
        document["endpoints"] = {"sharedInbox": self.directory.shared_inbox_uri}
        document["discoverable"] = self._discoverable(db, actor)
        return document

    def build_outbox(self, actor: Actor) -> dict[str, Any]:
        """Outbox history is not published; the collection is always empty."""
        return {
            "@context": AS_CONTEXT,
            "id": actor.outbox_uri,
            "type": "OrderedCollection",
            "totalItems": 0,
            "orderedItems": [],
        }

    def build_followers(self, db: Session, actor: Actor) -> dict[str, Any]:
        """Only the follower count is public; members are never listed."""
        total = self.follower_count(db, actor) if self._shows_follower_count(db, actor) else 0
        return {
            "@context": AS_CONTEXT,
            "id": actor.followers_uri,
            "type": "OrderedCollection",
            "totalItems": total,
        }

    # -- notes and activities -------------------------------------------------

    def author_actor(self, db: Session, post: Post) -> Actor:
        """Return the post author's actor when the post may federate."""
        if not self.gate.can_federate(db, post):
            raise NotEligible(f"post {post.id} is not federation-eligible")
        actor = self.gate.user_actor(db, post.user)
        if actor is None:
            raise NotEligible(f"author of post {post.id} has no active actor")
        return actor

    def format_content(self, post: Post) -> str:
        title = html.escape(post.title, quote=True)
        url = html.escape(self.post_url(post), quote=True)
        content = f"<p><strong>{title}</strong></p>"
        if post.content:
            content += f"<p>{html.escape(excerpt(post.content), quote=True)}</p>"
        content += f'<p><a href="{url}">{url}</a></p>'
        return content

    def build_note(self, db: Session, post: Post, actor: Actor | None = None) -> dict[str, Any]:
        actor = actor or self.author_actor(db, post)
        note: dict[str, Any] = {
            "id": self.note_uri(post.id),
            "type": "Note",
            "published": iso(post.published_at or post.created_at),
            "attributedTo": actor.actor_uri,
            "content": self.format_content(post),
            "url": self.post_url(post),
            "to": [PUBLIC],
            "cc": [actor.followers_uri],
        }
        if post.sub is not None:
            group = self.gate.group_actor(db, post.sub)
            if group is not None:
                # FEP-1b12 audience for forum context.
                note["audience"] = group.actor_uri
        if post.thumbnail_url:
            note["attachment"] = [
                {
                    "type": "Image",
                    "mediaType": "image/jpeg",
                    "url": post.thumbnail_url,
                    "name": post.title,
                }
            ]
        return note

    def build_note_document(self, db: Session, post: Post) -> dict[str, Any]:
        """Note served standalone at `/notes/{id}`, with its own @context."""
        return {"@context": AS_CONTEXT, **self.build_note(db, post)}

    def build_create_activity(
        self,
        db: Session,
        post: Post,
        actor: Actor | None = None,
        publication: int | None = None,
    ) -> dict[str, Any]:
        actor = actor or self.author_actor(db, post)
        publication = publication or self.current_publication(db, post)
        return {
            "@context": AS_CONTEXT,
            "id": self.create_activity_uri(post.id, publication),
            "type": "Create",
            "actor": actor.actor_uri,
            "published": iso(post.published_at or post.created_at),
            "to": [PUBLIC],
            "cc": [actor.followers_uri],
            "object": self.build_note(db, post, actor),
        }

    def build_announce_activity(
        self, db: Session, group: Actor, post: Post
    ) -> dict[str, Any]:
        """Group boost of the author's current Create (FEP-1b12)."""
        publication = self.current_publication(db, post)
        return {
            "@context": AS_CONTEXT,
            "id": self.announce_activity_uri(post.id, publication),
            "type": "Announce",
            "actor": group.actor_uri,
            "published": iso(post.published_at or post.created_at),
            "to": [PUBLIC],
            "cc": [group.followers_uri],
            "object": self.build_create_activity(db, post, publication=publication),
            "audience": group.actor_uri,
        }

    def build_update_activity(self, db: Session, post: Post) -> dict[str, Any]:
        actor = self.author_actor(db, post)
        now = self._clock()
        note = self.build_note(db, post, actor)
        note["updated"] = iso(post.updated_at or now)
        return {
            "@context": AS_CONTEXT,
            "id": f"{self.config.actor_base_url}/activities/update/{post.id}-{uuid.uuid4().hex}",
            "type": "Update",
            "actor": actor.actor_uri,
            "published": iso(post.updated_at or now),
            "to": [PUBLIC],
            "cc": [actor.followers_uri],
            "object": note,
        }

    def build_delete_activity(self, actor: Actor, post_id: int) -> dict[str, Any]:
        """Tombstone for a retracted post; needs no eligibility check."""
        return {
            "@context": AS_CONTEXT,
            "id": f"{self.config.actor_base_url}/activities/delete/{post_id}-{uuid.uuid4().hex}",
            "type": "Delete",
            "actor": actor.actor_uri,
            "to": [PUBLIC],
            "object": {"id": self.note_uri(post_id), "type": "Tombstone"},
        }

    def build_accept_activity(self, actor: Actor, follow: dict[str, Any]) -> dict[str, Any]:
        return {
            "@context": AS_CONTEXT,
            "id": f"{actor.actor_uri}#accepts/{uuid.uuid4()}",
            "type": "Accept",
            "actor": actor.actor_uri,
            "object": follow,
        }
