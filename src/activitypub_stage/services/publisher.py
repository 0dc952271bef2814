"""Turns local post events into queued outbound activities."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from activitypub_stage.db.time import utcnow
from activitypub_stage.models import ActorKind, OutboundActivity, Post
from activitypub_stage.services.actors import ActorDirectory
from activitypub_stage.services.collections import CollectionBuilder
from activitypub_stage.services.delivery import DeliveryService
from activitypub_stage.services.gate import FederationGate, post_settings

logger = logging.getLogger(__name__)


class Publisher:
    """Queues Create, Announce, Update and Delete for eligible posts.

    Nothing here touches the network; `DeliveryWorker` sends what is queued.
    """

    def __init__(
        self,
        directory: ActorDirectory,
        gate: FederationGate,
        collections: CollectionBuilder,
        delivery: DeliveryService,
    ) -> None:
        self.directory = directory
        self.gate = gate
        self.collections = collections
        self.delivery = delivery

    def publish_post(self, db: Session, post: Post) -> OutboundActivity | None:
        """Queue `Create` to the author's followers and auto-announce in the sub."""
        if not self.gate.can_federate(db, post):
            logger.debug("Post %s not eligible for federation", post.id)
            return None
        actor = self.collections.author_actor(db, post)
        settings = post_settings(db, post)
        if not settings.is_federated:
            # A retracted post comes back under a new Create id.
            settings.publications = (settings.publications or 0) + 1
        activity = self.collections.build_create_activity(
            db, post, actor, publication=settings.publications
        )
        note_uri = self.collections.note_uri(post.id)
        outbound = self.delivery.enqueue_to_followers(db, actor, activity, object_uri=note_uri)

        settings.is_federated = True
        settings.federated_at = settings.federated_at or utcnow()
        settings.note_uri = note_uri
        settings.activity_uri = activity["id"]
        db.flush()
        logger.info("Queued Create for post %s", post.id)

        if self.gate.can_announce(db, post):
            self.announce_post(db, post)
        return outbound

    def announce_post(
        self, db: Session, post: Post, *, manual: bool = False
    ) -> OutboundActivity | None:
        """Queue the sub group's `Announce` of the post."""
        if post.sub is None or not self.gate.can_announce(db, post, manual=manual):
            return None
        group = self.gate.group_actor(db, post.sub)
        if group is None:
            return None
        activity = self.collections.build_announce_activity(db, group, post)
        outbound = self.delivery.enqueue_to_followers(
            db, group, activity, object_uri=self.collections.note_uri(post.id)
        )
        logger.info("Queued Announce of post %s by %s", post.id, group.actor_uri)
        return outbound

    def update_post(self, db: Session, post: Post) -> OutboundActivity | None:
        """Queue `Update` for a post that was already federated."""
        settings = post_settings(db, post, create=False)
        if not settings.is_federated or not self.gate.can_federate(db, post):
            return None
        actor = self.collections.author_actor(db, post)
        activity = self.collections.build_update_activity(db, post)
        return self.delivery.enqueue_to_followers(
            db, actor, activity, object_uri=self.collections.note_uri(post.id)
        )

    def retract_post(self, db: Session, post: Post) -> OutboundActivity | None:
        """Cancel pending deliveries of the post and queue a `Delete`."""
        note_uri = self.collections.note_uri(post.id)
        cancelled = self.delivery.cancel_for_object(db, note_uri)

        settings = post_settings(db, post, create=False)
        if not settings.is_federated:
            return None
        actor = self.directory.find_for_entity(db, ActorKind.USER, post.user_id)
        if actor is None:
            return None

        inboxes = self.delivery.follower_inboxes(db, actor)
        if post.sub is not None:
            group = self.directory.find_for_entity(db, ActorKind.GROUP, post.sub.id)
            if group is not None:
                inboxes.extend(
                    inbox
                    for inbox in self.delivery.follower_inboxes(db, group)
                    if inbox not in inboxes
                )

        activity = self.collections.build_delete_activity(actor, post.id)
        outbound = self.delivery.enqueue_to_inboxes(db, actor, activity, inboxes, note_uri)
        settings.is_federated = False
        db.flush()
        logger.info("Queued Delete for post %s (%d pending cancelled)", post.id, cancelled)
        return outbound
