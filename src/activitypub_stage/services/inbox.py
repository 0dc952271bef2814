"""Inbox Processor: applies inbound activities to local state.

Every transition is idempotent. Re-delivered or reordered activities are
resolved by existence checks on their idempotency key (last writer wins), and
the `Follower` insert relies on the `(actor_id, follower_uri)` unique
constraint for concurrent duplicates.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import ActorNotFound, BlockedInstanceError, MalformedRequest
from activitypub_stage.models import Actor, Follower
from activitypub_stage.models.interaction import INTERACTION_ANNOUNCE, INTERACTION_LIKE
from activitypub_stage.services.actors import ActorDirectory
from activitypub_stage.services.blocklist import Blocklist
from activitypub_stage.services.collections import CollectionBuilder
from activitypub_stage.services.delivery import DeliveryService
from activitypub_stage.services.interactions import InteractionService, object_uri
from activitypub_stage.services.key_cache import RemoteActorEntry
from activitypub_stage.services.signatures import SignatureFailure, SignatureResult
from activitypub_stage.services.urls import host_of

logger = logging.getLogger(__name__)

_INTERACTION_KINDS = {
    "Like": INTERACTION_LIKE,
    "Announce": INTERACTION_ANNOUNCE,
}


class InboxOutcome(str, enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    IGNORED = "ignored"
    DROPPED = "dropped"


def validate_activity(payload: Any) -> dict[str, Any]:
    """Return the activity when it has the minimum shape, else raise.

    Raises:
        MalformedRequest: Not an object, or no `type`/`actor`.
    """
    if not isinstance(payload, dict):
        raise MalformedRequest("activity must be a JSON object")
    if not isinstance(payload.get("type"), str) or not payload["type"]:
        raise MalformedRequest("activity type missing")
    if object_uri(payload.get("actor")) is None:
        raise MalformedRequest("activity actor missing")
    return payload


def actor_of(activity: dict[str, Any]) -> str:
    actor = object_uri(activity.get("actor"))
    if actor is None:
        raise MalformedRequest("activity actor missing")
    return actor


def bind_signature(result: SignatureResult, activity: dict[str, Any]) -> SignatureResult:
    """Treat a valid signature by someone other than the activity's actor as invalid."""
    if not result.valid or result.signer is None:
        return result
    if result.signer.actor_uri != actor_of(activity):
        return SignatureResult(
            False, result.key_id, SignatureFailure.SIGNATURE_MISMATCH, result.signer
        )
    return result


class InboxProcessor:
    def __init__(
        self,
        config: FederationConfig,
        directory: ActorDirectory,
        blocklist: Blocklist,
        delivery: DeliveryService,
        collections: CollectionBuilder,
        interactions: InteractionService,
    ) -> None:
        self.config = config
        self.directory = directory
        self.blocklist = blocklist
        self.delivery = delivery
        self.collections = collections
        self.interactions = interactions

    def resolve_shared_recipient(self, db: Session, activity: dict[str, Any]) -> Actor | None:
        """Local actor a shared-inbox Follow or Undo(Follow) is addressed to."""
        target = activity.get("object")
        if activity.get("type") == "Undo" and isinstance(target, dict):
            target = target.get("object")
        uri = object_uri(target)
        if uri is None:
            return None
        try:
            return self.directory.resolve_uri(db, uri)
        except ActorNotFound:
            return None

    def process(
        self,
        db: Session,
        recipient: Actor | None,
        activity: dict[str, Any],
        signature: SignatureResult | None = None,
    ) -> InboxOutcome:
        """Apply one validated activity addressed to `recipient`.

        `recipient` is None for the shared inbox; Follow and Undo(Follow) are
        then routed to the local actor named in the object.
        """
        activity = validate_activity(activity)
        activity_type = activity["type"]
        remote_actor = actor_of(activity)

        try:
            self.blocklist.ensure_allowed(db, remote_actor)
        except BlockedInstanceError as exc:
            logger.warning(
                "Dropping %s %s from blocked instance %s", activity_type, activity.get("id"), exc.domain
            )
            return InboxOutcome.DROPPED

        if activity_type in ("Follow", "Undo") and recipient is None:
            recipient = self.resolve_shared_recipient(db, activity)

        signer = signature.signer if signature is not None else None
        if activity_type == "Follow":
            return self._follow(db, recipient, activity, remote_actor, signer)
        if activity_type == "Undo":
            return self._undo(db, recipient, activity, remote_actor)
        if activity_type == "Delete":
            return self._delete(db, activity, remote_actor)
        if activity_type in _INTERACTION_KINDS:
            applied = self.interactions.register(
                db,
                _INTERACTION_KINDS[activity_type],
                remote_actor,
                object_uri(activity.get("object")),
                object_uri(activity.get("id")),
            )
            return InboxOutcome.APPLIED if applied else InboxOutcome.NOOP
        if activity_type == "Create":
            return self._create(db, activity, remote_actor)

        logger.debug("Ignoring %s activity %s from %s", activity_type, activity.get("id"), remote_actor)
        return InboxOutcome.IGNORED

    # -- Follow / Undo ---------------------------------------------------------

    def _follow(
        self,
        db: Session,
        recipient: Actor | None,
        activity: dict[str, Any],
        remote_actor: str,
        signer: RemoteActorEntry | None,
    ) -> InboxOutcome:
        if recipient is None or not recipient.is_active:
            logger.debug("Follow %s targets no active local actor", activity.get("id"))
            return InboxOutcome.IGNORED
        target = object_uri(activity.get("object"))
        if target is not None and target != recipient.actor_uri:
            logger.debug("Follow %s object %s is not %s", activity.get("id"), target, recipient.actor_uri)
            return InboxOutcome.IGNORED

        known = signer if signer is not None and signer.actor_uri == remote_actor else None
        inbox = (known.inbox if known else None) or f"{remote_actor}/inbox"
        created = self._add_follower(db, recipient, remote_actor, inbox, known)

        if self.config.auto_accept_follows:
            accept = self.collections.build_accept_activity(recipient, activity)
            self.delivery.enqueue_to_inbox(db, recipient, accept, inbox)
        return InboxOutcome.APPLIED if created else InboxOutcome.NOOP

    def _add_follower(
        self,
        db: Session,
        recipient: Actor,
        remote_actor: str,
        inbox: str,
        known: RemoteActorEntry | None,
    ) -> bool:
        existing = (
            db.query(Follower)
            .filter(Follower.actor_id == recipient.id, Follower.follower_uri == remote_actor)
            .first()
        )
        if existing is not None:
            if known is not None:
                existing.follower_inbox = inbox
                existing.follower_shared_inbox = known.shared_inbox
                db.flush()
            return False

        try:
            with db.begin_nested():
                db.add(
                    Follower(
                        actor_id=recipient.id,
                        follower_uri=remote_actor,
                        follower_inbox=inbox,
                        follower_shared_inbox=known.shared_inbox if known else None,
                        follower_domain=host_of(remote_actor),
                        follower_username=known.username if known else None,
                    )
                )
        except IntegrityError:
            # A concurrent Follow won the race.
            return False
        logger.info("New follower for %s: %s", recipient.actor_uri, remote_actor)
        return True

    def _undo(
        self,
        db: Session,
        recipient: Actor | None,
        activity: dict[str, Any],
        remote_actor: str,
    ) -> InboxOutcome:
        inner = activity.get("object")
        if not isinstance(inner, dict):
            logger.debug("Undo %s without embedded object", activity.get("id"))
            return InboxOutcome.IGNORED
        inner_actor = object_uri(inner.get("actor"))
        if inner_actor is not None and inner_actor != remote_actor:
            logger.warning("Undo %s by %s of activity owned by %s", activity.get("id"), remote_actor, inner_actor)
            return InboxOutcome.IGNORED

        inner_type = inner.get("type")
        if inner_type == "Follow":
            if recipient is None:
                return InboxOutcome.NOOP
            deleted = (
                db.query(Follower)
                .filter(Follower.actor_id == recipient.id, Follower.follower_uri == remote_actor)
                .delete(synchronize_session=False)
            )
            db.flush()
            if deleted:
                logger.info("Unfollowed %s by %s", recipient.actor_uri, remote_actor)
                return InboxOutcome.APPLIED
            return InboxOutcome.NOOP

        if inner_type in _INTERACTION_KINDS:
            undone = self.interactions.undo(
                db, _INTERACTION_KINDS[inner_type], remote_actor, object_uri(inner.get("object"))
            )
            return InboxOutcome.APPLIED if undone else InboxOutcome.NOOP

        logger.debug("Ignoring Undo of %s from %s", inner_type, remote_actor)
        return InboxOutcome.IGNORED

    # -- Delete / Create -------------------------------------------------------

    def _delete(self, db: Session, activity: dict[str, Any], remote_actor: str) -> InboxOutcome:
        target = object_uri(activity.get("object"))
        if target is None:
            return InboxOutcome.IGNORED

        if target == remote_actor:
            removed = (
                db.query(Follower)
                .filter(Follower.follower_uri == remote_actor)
                .delete(synchronize_session=False)
            )
            purged = self.interactions.purge_actor(db, remote_actor)
            db.flush()
            if removed or purged:
                logger.info(
                    "Remote actor %s deleted: %d follower edges, %d interactions removed",
                    remote_actor,
                    removed,
                    purged,
                )
                return InboxOutcome.APPLIED
            return InboxOutcome.NOOP

        if self.interactions.delete_reply(db, remote_actor, target):
            return InboxOutcome.APPLIED
        return InboxOutcome.NOOP

    def _create(self, db: Session, activity: dict[str, Any], remote_actor: str) -> InboxOutcome:
        note = activity.get("object")
        if not isinstance(note, dict) or note.get("type") != "Note":
            logger.debug("Ignoring Create of non-Note from %s", remote_actor)
            return InboxOutcome.IGNORED
        if not note.get("inReplyTo"):
            logger.debug("Ignoring Create(Note) without inReplyTo from %s", remote_actor)
            return InboxOutcome.IGNORED
        if self.interactions.import_reply(db, remote_actor, note):
            return InboxOutcome.APPLIED
        return InboxOutcome.NOOP
