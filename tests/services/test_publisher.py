"""Tests for turning post events into queued activities."""

import json

from sqlalchemy.orm import Session

from activitypub_stage.models import DeliveryLog, OutboundActivity, Sub, User
from activitypub_stage.models.delivery import DELIVERY_DEAD, DELIVERY_PENDING
from activitypub_stage.services import FederationServices
from activitypub_stage.services.gate import post_settings, sub_settings
from tests.conftest import make_follower, make_post

BOB = "https://remote.example/users/bob"
DAN = "https://other.example/users/dan"


def _outbound_types(db: Session) -> list[str]:
    return [row.activity_type for row in db.query(OutboundActivity).order_by(OutboundActivity.id)]


def test_publish_queues_create_to_followers(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, BOB)
    post = make_post(db_session, federated_alice)

    outbound = services.publisher.publish_post(db_session, post)

    assert outbound is not None
    payload = json.loads(outbound.payload)
    assert payload["type"] == "Create"
    assert payload["object"]["id"] == services.collections.note_uri(post.id)
    [log] = db_session.query(DeliveryLog).all()
    assert log.target_inbox == f"{BOB}/inbox"
    assert log.status == DELIVERY_PENDING

    settings = post_settings(db_session, post, create=False)
    assert settings.is_federated
    assert settings.federated_at is not None
    assert settings.note_uri == payload["object"]["id"]
    assert settings.activity_uri == payload["id"]


def test_publish_without_followers_still_marks_federated(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    post = make_post(db_session, federated_alice)
    assert services.publisher.publish_post(db_session, post) is not None
    assert db_session.query(DeliveryLog).count() == 0
    assert post_settings(db_session, post, create=False).is_federated


def test_ineligible_posts_are_not_published(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    draft = make_post(db_session, federated_alice, status="draft")
    assert services.publisher.publish_post(db_session, draft) is None

    opted_out = make_post(db_session, federated_alice)
    post_settings(db_session, opted_out).should_federate = False
    assert services.publisher.publish_post(db_session, opted_out) is None

    assert db_session.query(OutboundActivity).count() == 0


def test_post_in_federated_sub_is_announced(
    db_session: Session, services: FederationServices, federated_alice: User, sub: Sub
) -> None:
    group = services.gate.enable_sub(db_session, sub)
    make_follower(db_session, group, DAN)
    post = make_post(db_session, federated_alice, sub=sub)

    services.publisher.publish_post(db_session, post)

    assert _outbound_types(db_session) == ["Create", "Announce"]
    [log] = db_session.query(DeliveryLog).all()
    assert log.target_inbox == f"{DAN}/inbox"
    assert log.local_actor_id == group.id


def test_manual_announce_when_auto_announce_is_off(
    db_session: Session, services: FederationServices, federated_alice: User, sub: Sub
) -> None:
    services.gate.enable_sub(db_session, sub)
    sub_settings(db_session, sub.id).auto_announce = False
    post = make_post(db_session, federated_alice, sub=sub)

    services.publisher.publish_post(db_session, post)
    assert _outbound_types(db_session) == ["Create"]

    assert services.publisher.announce_post(db_session, post) is None
    assert services.publisher.announce_post(db_session, post, manual=True) is not None
    assert _outbound_types(db_session) == ["Create", "Announce"]


def test_update_only_after_publish(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, BOB)
    post = make_post(db_session, federated_alice)

    assert services.publisher.update_post(db_session, post) is None

    services.publisher.publish_post(db_session, post)
    post.title = "Edited"
    outbound = services.publisher.update_post(db_session, post)

    assert outbound is not None
    payload = json.loads(outbound.payload)
    assert payload["type"] == "Update"
    assert "Edited" in payload["object"]["content"]


def test_retract_cancels_pending_and_queues_delete(
    db_session: Session, services: FederationServices, federated_alice: User, sub: Sub
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    group = services.gate.enable_sub(db_session, sub)
    make_follower(db_session, actor, BOB)
    make_follower(db_session, group, BOB)
    make_follower(db_session, group, DAN)
    post = make_post(db_session, federated_alice, sub=sub)
    services.publisher.publish_post(db_session, post)

    outbound = services.publisher.retract_post(db_session, post)

    assert outbound is not None
    assert outbound.activity_type == "Delete"
    assert outbound.actor_id == actor.id
    delete_logs = (
        db_session.query(DeliveryLog)
        .filter(DeliveryLog.activity_id == outbound.activity_id)
        .order_by(DeliveryLog.id)
        .all()
    )
    assert [log.target_inbox for log in delete_logs] == [f"{BOB}/inbox", f"{DAN}/inbox"]
    assert {log.status for log in delete_logs} == {DELIVERY_PENDING}

    earlier = (
        db_session.query(DeliveryLog)
        .filter(DeliveryLog.activity_id != outbound.activity_id)
        .all()
    )
    assert earlier
    assert {log.status for log in earlier} == {DELIVERY_DEAD}
    assert not post_settings(db_session, post, create=False).is_federated


def test_retract_of_unpublished_post_does_nothing(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    post = make_post(db_session, federated_alice)
    assert services.publisher.retract_post(db_session, post) is None
    assert db_session.query(OutboundActivity).count() == 0


def test_republish_after_retract_is_delivered_again(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, BOB)
    post = make_post(db_session, federated_alice)
    first = services.publisher.publish_post(db_session, post)
    services.publisher.retract_post(db_session, post)

    post_settings(db_session, post).should_federate = True
    second = services.publisher.publish_post(db_session, post)

    assert second is not None
    assert second.activity_id != first.activity_id
    assert second.activity_id == services.collections.create_activity_uri(post.id, 2)
    [log] = db_session.query(DeliveryLog).filter(DeliveryLog.activity_id == second.activity_id).all()
    assert log.target_inbox == f"{BOB}/inbox"
    assert log.status == DELIVERY_PENDING
    assert post_settings(db_session, post, create=False).activity_uri == second.activity_id
    assert _outbound_types(db_session) == ["Create", "Delete", "Create"]


def test_publishing_twice_keeps_one_create(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, BOB)
    post = make_post(db_session, federated_alice)

    first = services.publisher.publish_post(db_session, post)
    again = services.publisher.publish_post(db_session, post)

    assert again.activity_id == first.activity_id
    assert db_session.query(DeliveryLog).count() == 1


def test_consecutive_updates_each_federate(
    db_session: Session, services: FederationServices, federated_alice: User
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, BOB)
    post = make_post(db_session, federated_alice)
    services.publisher.publish_post(db_session, post)

    post.title = "Edit one"
    first = services.publisher.update_post(db_session, post)
    post.title = "Edit two"
    second = services.publisher.update_post(db_session, post)

    assert first.activity_id != second.activity_id
    assert "Edit two" in json.loads(second.payload)["object"]["content"]
    updates = db_session.query(DeliveryLog).filter(DeliveryLog.activity_id == second.activity_id)
    assert updates.count() == 1
