# mypy: ignore-errors
# tests/v1/test_federation_flow.py
"""End-to-end federation between a local user and a remote follower."""

import json

import pytest
from fastapi import status

from activitypub_stage.models import DeliveryLog, Follower
from activitypub_stage.models.delivery import DELIVERY_DELIVERED
from activitypub_stage.services.signatures import SignedRequest
from tests.conftest import auth_headers, make_post

API = "/api/v1/activitypub"


async def _verify_received(services, request) -> bool:
    signed = SignedRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=request.content,
    )
    result = await services.verifier.verify(signed)
    return result.valid


@pytest.mark.asyncio
async def test_follow_publish_and_retract(client, remote, services, alice, bob, db_session) -> None:
    """alice opts in, bob follows, alice publishes and then retracts a post."""
    headers = auth_headers(alice)

    # alice opts in and is discoverable.
    response = client.patch(
        f"{API}/settings", json={"federation_enabled": True}, headers=headers
    )
    alice_uri = response.json()["actor"]["uri"]
    finger = client.get(
        "/.well-known/webfinger", params={"resource": "acct:alice@social.example"}
    ).json()
    assert finger["aliases"] == [alice_uri]
    remote.documents[alice_uri] = client.get("/activitypub/users/alice").json()

    # bob follows through the shared inbox.
    follow = json.dumps(
        {"id": f"{bob}#follows/1", "type": "Follow", "actor": bob, "object": alice_uri}
    ).encode()
    response = client.post(
        "/activitypub/inbox", content=follow, headers=remote.sign(bob, "/activitypub/inbox", follow)
    )
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert db_session.query(Follower).one().follower_uri == bob

    # The Accept goes out signed by alice.
    assert await services.delivery.run_once(db_session) == 1
    [accept] = remote.delivered_to(f"{bob}/inbox")
    assert accept["type"] == "Accept"
    assert accept["object"]["id"] == f"{bob}#follows/1"
    assert await _verify_received(services, remote.received[-1])

    # alice federates a post.
    post = make_post(db_session, alice)
    response = client.patch(
        f"{API}/posts/{post.id}/settings", json={"should_federate": True}, headers=headers
    )
    assert response.json()["is_federated"] is True
    assert await services.delivery.run_once(db_session) == 1
    create = remote.delivered_to(f"{bob}/inbox")[-1]
    assert create["type"] == "Create"
    assert create["object"]["attributedTo"] == alice_uri
    assert await _verify_received(services, remote.received[-1])

    # bob's Like is counted against the post.
    like = json.dumps(
        {"id": f"{bob}#likes/1", "type": "Like", "actor": bob, "object": create["object"]["id"]}
    ).encode()
    response = client.post(
        "/activitypub/inbox", content=like, headers=remote.sign(bob, "/activitypub/inbox", like)
    )
    assert response.status_code == status.HTTP_202_ACCEPTED
    db_session.refresh(post)
    assert post.federation_likes_count == 1

    # alice retracts; bob receives a Delete for the same Note.
    client.patch(
        f"{API}/posts/{post.id}/settings", json={"should_federate": False}, headers=headers
    )
    assert await services.delivery.run_once(db_session) == 1
    delete = remote.delivered_to(f"{bob}/inbox")[-1]
    assert delete["type"] == "Delete"
    assert delete["object"]["id"] == create["object"]["id"]

    statuses = {row.status for row in db_session.query(DeliveryLog).all()}
    assert statuses == {DELIVERY_DELIVERED}

    # bob unfollows.
    undo = json.dumps(
        {
            "id": f"{bob}#undo/1",
            "type": "Undo",
            "actor": bob,
            "object": {"id": f"{bob}#follows/1", "type": "Follow", "actor": bob, "object": alice_uri},
        }
    ).encode()
    response = client.post(
        "/activitypub/users/alice/inbox",
        content=undo,
        headers=remote.sign(bob, "/activitypub/users/alice/inbox", undo),
    )
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert db_session.query(Follower).count() == 0
