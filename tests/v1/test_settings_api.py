# mypy: ignore-errors
# tests/v1/test_settings_api.py
"""Tests for the federation settings API."""

from fastapi import status

from activitypub_stage.models import Actor, ActorKind, DeliveryLog, OutboundActivity
from activitypub_stage.services.gate import post_settings
from tests.conftest import auth_headers, make_follower, make_post

API = "/api/v1/activitypub"


def test_settings_require_authentication(client) -> None:
    """Anonymous callers are turned away."""
    response = client.get(f"{API}/settings")
    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


def test_default_user_settings(client, alice) -> None:
    """Federation is off until the user opts in."""
    response = client.get(f"{API}/settings", headers=auth_headers(alice))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["federation_enabled"] is False
    assert data["default_federate_posts"] is False
    assert data["indexable"] is True
    assert data["actor"] is None


def test_enable_user_federation(client, alice, db_session) -> None:
    """Opting in provisions the actor and reports its handle."""
    response = client.patch(
        f"{API}/settings",
        json={"federation_enabled": True, "default_federate_posts": True},
        headers=auth_headers(alice),
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["federation_enabled"] is True
    assert data["federation_enabled_at"] is not None
    assert data["default_federate_posts"] is True
    assert data["actor"]["handle"] == "@alice@social.example"
    assert data["actor"]["uri"] == "https://social.example/activitypub/users/alice"
    assert data["actor"]["followers"] == 0

    actor = db_session.query(Actor).filter(Actor.kind == ActorKind.USER).one()
    assert actor.is_active


def test_disable_user_federation(client, federated_alice, db_session) -> None:
    """Opting out keeps the row but hides the actor."""
    response = client.patch(
        f"{API}/settings", json={"federation_enabled": False}, headers=auth_headers(federated_alice)
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["federation_enabled"] is False
    assert response.json()["actor"] is None
    actor = db_session.query(Actor).filter(Actor.kind == ActorKind.USER).one()
    assert not actor.is_active


def test_partial_update_keeps_other_fields(client, federated_alice) -> None:
    response = client.patch(
        f"{API}/settings", json={"indexable": False}, headers=auth_headers(federated_alice)
    )
    data = response.json()
    assert data["indexable"] is False
    assert data["federation_enabled"] is True
    assert data["default_federate_posts"] is True


def test_post_settings_inherit_author_default(client, federated_alice, db_session) -> None:
    post = make_post(db_session, federated_alice)
    response = client.get(f"{API}/posts/{post.id}/settings", headers=auth_headers(federated_alice))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["should_federate"] is True
    assert data["is_federated"] is False
    assert data["can_federate"] is True


def test_post_opt_in_publishes(client, services, alice, db_session) -> None:
    """Opting a post in queues its Create to the author's followers."""
    actor = services.gate.enable_user(db_session, alice)
    make_follower(db_session, actor, "https://remote.example/users/bob")
    post = make_post(db_session, alice)

    response = client.patch(
        f"{API}/posts/{post.id}/settings",
        json={"should_federate": True},
        headers=auth_headers(alice),
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["is_federated"] is True
    assert data["note_uri"] == services.collections.note_uri(post.id)
    assert db_session.query(DeliveryLog).count() == 1


def test_post_opt_out_retracts(client, services, federated_alice, db_session) -> None:
    """Opting a federated post out queues a Delete."""
    actor = services.gate.user_actor(db_session, federated_alice)
    make_follower(db_session, actor, "https://remote.example/users/bob")
    post = make_post(db_session, federated_alice)
    post_settings(db_session, post)
    services.publisher.publish_post(db_session, post)

    response = client.patch(
        f"{API}/posts/{post.id}/settings",
        json={"should_federate": False},
        headers=auth_headers(federated_alice),
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_federated"] is False
    types = [row.activity_type for row in db_session.query(OutboundActivity).order_by(OutboundActivity.id)]
    assert types == ["Create", "Delete"]


def test_only_author_manages_post(client, federated_alice, carol, db_session) -> None:
    post = make_post(db_session, federated_alice)
    response = client.get(f"{API}/posts/{post.id}/settings", headers=auth_headers(carol))
    assert response.status_code == status.HTTP_403_FORBIDDEN
    response = client.get(f"{API}/posts/99999/settings", headers=auth_headers(carol))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_sub_settings_for_moderator(client, carol, sub) -> None:
    """Moderators enable federation and get a group handle."""
    response = client.patch(
        f"{API}/subs/{sub.id}/settings",
        json={"federation_enabled": True, "auto_announce": False},
        headers=auth_headers(carol),
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["federation_enabled"] is True
    assert data["auto_announce"] is False
    assert data["actor"]["handle"] == "!tech@social.example"


def test_sub_settings_forbidden_for_others(client, alice, admin, sub) -> None:
    """Plain members may not touch sub federation; admins may."""
    response = client.get(f"{API}/subs/{sub.id}/settings", headers=auth_headers(alice))
    assert response.status_code == status.HTTP_403_FORBIDDEN
    response = client.get(f"{API}/subs/{sub.id}/settings", headers=auth_headers(admin))
    assert response.status_code == status.HTTP_200_OK
    response = client.get(f"{API}/subs/99999/settings", headers=auth_headers(admin))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_manual_announce(client, services, carol, federated_alice, sub, db_session) -> None:
    """Moderators can queue an Announce of a post that has not federated yet."""
    services.gate.enable_sub(db_session, sub)
    post = make_post(db_session, federated_alice, sub=sub)

    listing = client.get(f"{API}/subs/{sub.id}/announceable", headers=auth_headers(carol))
    assert [item["id"] for item in listing.json()["posts"]] == [post.id]

    response = client.post(f"{API}/subs/{sub.id}/announce/{post.id}", headers=auth_headers(carol))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["post_id"] == post.id
    assert db_session.query(OutboundActivity).filter(OutboundActivity.activity_type == "Announce").count() == 1


def test_announce_rejections(client, services, carol, federated_alice, sub, db_session) -> None:
    post = make_post(db_session, federated_alice, sub=sub)
    url = f"{API}/subs/{sub.id}/announce/{post.id}"

    # Sub not federated yet.
    assert client.post(url, headers=auth_headers(carol)).status_code == status.HTTP_400_BAD_REQUEST

    services.gate.enable_sub(db_session, sub)
    post_settings(db_session, post).should_federate = False
    db_session.flush()
    assert client.post(url, headers=auth_headers(carol)).status_code == status.HTTP_400_BAD_REQUEST

    other = make_post(db_session, federated_alice)
    response = client.post(f"{API}/subs/{sub.id}/announce/{other.id}", headers=auth_headers(carol))
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_federation_status(client, instance_actor) -> None:
    response = client.get(f"{API}/status")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "enabled": True,
        "actor": "https://social.example/activitypub/actor",
        "username": "stage",
        "followers": 0,
    }


def test_public_actor_summaries(client, services, federated_alice, sub, db_session) -> None:
    """Public lookups used by the web client."""
    services.gate.enable_sub(db_session, sub)

    user = client.get(f"{API}/users/alice").json()
    assert user["handle"] == "@alice@social.example"
    assert user["name"] == "Alice"
    assert user["followers"] == 0

    group = client.get(f"{API}/groups/tech").json()
    assert group["handle"] == "!tech@social.example"
    assert group["display_name"] == "Technology"

    assert client.get(f"{API}/users/nobody").status_code == status.HTTP_404_NOT_FOUND


def test_federation_status_before_provisioning(client) -> None:
    response = client.get(f"{API}/status")
    assert response.json() == {"enabled": True, "actor": None, "username": None, "followers": 0}
