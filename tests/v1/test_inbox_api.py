# mypy: ignore-errors
# tests/v1/test_inbox_api.py
"""Tests for the signed inbox endpoints."""

import dataclasses
import json
from datetime import timedelta

from fastapi import status

from activitypub_stage.db.time import utcnow
from activitypub_stage.models import DeliveryLog, Follower
from activitypub_stage.services.signatures import SignaturePolicy
from tests.conftest import make_post

ALICE_INBOX = "/activitypub/users/alice/inbox"


def _follow(bob: str, target: str) -> bytes:
    return json.dumps(
        {
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": f"{bob}#follows/1",
            "type": "Follow",
            "actor": bob,
            "object": target,
        }
    ).encode()


def _post(client, remote, actor_uri, body, path=ALICE_INBOX, **kwargs):
    headers = remote.sign(actor_uri, path, body, **kwargs)
    return client.post(path, content=body, headers=headers)


def test_signed_follow_is_accepted(client, remote, services, federated_alice, bob, db_session) -> None:
    """A signed Follow creates the follower edge and queues an Accept."""
    actor = services.gate.user_actor(db_session, federated_alice)
    response = _post(client, remote, bob, _follow(bob, actor.actor_uri))

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json() == {"status": "ok"}
    follower = db_session.query(Follower).one()
    assert follower.follower_uri == bob
    assert follower.actor_id == actor.id
    [log] = db_session.query(DeliveryLog).all()
    assert log.target_inbox == f"{bob}/inbox"


def test_follow_via_shared_inbox(client, remote, services, federated_alice, bob, db_session) -> None:
    """The shared inbox routes a Follow to the actor it names."""
    actor = services.gate.user_actor(db_session, federated_alice)
    response = _post(client, remote, bob, _follow(bob, actor.actor_uri), path="/activitypub/inbox")
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert db_session.query(Follower).count() == 1


def test_group_inbox(client, remote, services, sub, bob, db_session) -> None:
    group = services.gate.enable_sub(db_session, sub)
    path = "/activitypub/groups/tech/inbox"
    response = _post(client, remote, bob, _follow(bob, group.actor_uri), path=path)
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert db_session.query(Follower).one().actor_id == group.id


def test_unsigned_request_is_rejected(client, services, federated_alice, bob, db_session) -> None:
    """Signatures are mandatory."""
    actor = services.gate.user_actor(db_session, federated_alice)
    response = client.post(
        ALICE_INBOX,
        content=_follow(bob, actor.actor_uri),
        headers={"Content-Type": "application/activity+json"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"error": "Invalid HTTP Signature"}
    assert db_session.query(Follower).count() == 0


def test_tampered_body_is_rejected(client, remote, services, federated_alice, bob, db_session) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    headers = remote.sign(bob, ALICE_INBOX, _follow(bob, actor.actor_uri))
    tampered = _follow(bob, "https://social.example/activitypub/users/someone-else")
    response = client.post(ALICE_INBOX, content=tampered, headers=headers)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_tampered_body_is_logged_when_not_enforced(
    client, remote, services, federated_alice, bob, db_session, caplog
) -> None:
    """With enforcement off a bad digest is logged and the activity still processed."""
    services.policy = SignaturePolicy(dataclasses.replace(services.config, signature_enforce=False))
    actor = services.gate.user_actor(db_session, federated_alice)
    headers = remote.sign(bob, ALICE_INBOX, _follow(bob, actor.actor_uri))
    tampered = _follow(bob, actor.actor_uri).replace(b"follows/1", b"follows/2")

    with caplog.at_level("WARNING"):
        response = client.post(ALICE_INBOX, content=tampered, headers=headers)

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert "digest_mismatch" in caplog.text
    assert db_session.query(Follower).one().follower_uri == bob


def test_stale_signature_is_rejected(client, remote, services, federated_alice, bob, db_session) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    response = _post(
        client, remote, bob, _follow(bob, actor.actor_uri), date=utcnow() - timedelta(hours=1)
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert remote.fetches == []


def test_signer_must_be_the_actor(client, remote, services, federated_alice, bob, db_session) -> None:
    """A valid signature by bob cannot carry an activity by someone else."""
    carl = remote.add_actor("carl")
    actor = services.gate.user_actor(db_session, federated_alice)
    response = _post(client, remote, bob, _follow(carl, actor.actor_uri))
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert db_session.query(Follower).count() == 0


def test_blocked_instance_is_dropped_quietly(
    client, remote, services, federated_alice, bob, db_session
) -> None:
    """Blocked senders get a 202 and nothing happens; their keys are not even fetched."""
    services.blocklist.block(db_session, "remote.example")
    actor = services.gate.user_actor(db_session, federated_alice)
    response = _post(client, remote, bob, _follow(bob, actor.actor_uri))
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert db_session.query(Follower).count() == 0
    assert remote.fetches == []


def test_malformed_body(client, remote, federated_alice, bob) -> None:
    """Bodies that are not JSON activities are a bad request."""
    response = _post(client, remote, bob, b"not json")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"error": "Malformed request"}

    response = _post(client, remote, bob, json.dumps({"type": "Follow"}).encode())
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_unknown_recipient(client, remote, bob) -> None:
    response = _post(
        client, remote, bob, _follow(bob, "x"), path="/activitypub/users/nobody/inbox"
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_like_through_shared_inbox(client, remote, services, federated_alice, bob, db_session) -> None:
    """Likes of a federated post are counted."""
    post = make_post(db_session, federated_alice)
    body = json.dumps(
        {
            "id": f"{bob}#likes/1",
            "type": "Like",
            "actor": bob,
            "object": services.collections.note_uri(post.id),
        }
    ).encode()
    response = _post(client, remote, bob, body, path="/activitypub/inbox")
    assert response.status_code == status.HTTP_202_ACCEPTED
    db_session.refresh(post)
    assert post.federation_likes_count == 1


def test_inbox_hidden_when_federation_disabled(
    client, remote, services, federated_alice, bob, db_session
) -> None:
    actor = services.gate.user_actor(db_session, federated_alice)
    services.config = dataclasses.replace(services.config, enabled=False)
    response = _post(client, remote, bob, _follow(bob, actor.actor_uri))
    assert response.status_code == status.HTTP_404_NOT_FOUND
