# mypy: ignore-errors
# tests/v1/test_webfinger_api.py
"""Tests for the WebFinger discovery endpoint."""

import dataclasses

from fastapi import status

from activitypub_stage.models import Actor


def test_webfinger_user(client, services, federated_alice, db_session) -> None:
    """An opted-in user resolves to a JRD pointing at the actor document."""
    actor = services.gate.user_actor(db_session, federated_alice)
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:alice@social.example"}
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("application/jrd+json")
    assert response.headers["access-control-allow-origin"] == "*"
    data = response.json()
    assert data["subject"] == "acct:alice@social.example"
    [self_link] = [link for link in data["links"] if link["rel"] == "self"]
    assert self_link["href"] == actor.actor_uri
    assert self_link["type"] == "application/activity+json"


def test_webfinger_group_with_bang_prefix(client, services, sub, db_session) -> None:
    """Groups are addressed as `!name@host`."""
    services.gate.enable_sub(db_session, sub)
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:!tech@social.example"}
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["subject"] == "acct:!tech@social.example"


def test_webfinger_instance_actor(client, instance_actor) -> None:
    """The provisioned instance actor is discoverable by name."""
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:stage@social.example"}
    )
    assert response.status_code == status.HTTP_200_OK
    [self_link] = [link for link in response.json()["links"] if link["rel"] == "self"]
    assert self_link["href"] == "https://social.example/activitypub/actor"


def test_webfinger_unknown_or_opted_out_user(client, alice) -> None:
    """Users who did not enable federation are not discoverable."""
    for resource in ("acct:alice@social.example", "acct:nobody@social.example"):
        response = client.get("/.well-known/webfinger", params={"resource": resource})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "error" in response.json()


def test_webfinger_foreign_domain(client, federated_alice) -> None:
    """Accounts on other hosts are never answered."""
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:alice@elsewhere.example"}
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_webfinger_malformed_resource(client) -> None:
    """Missing or malformed resources are a bad request."""
    assert client.get("/.well-known/webfinger").status_code == status.HTTP_400_BAD_REQUEST
    response = client.get("/.well-known/webfinger", params={"resource": "alice"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_webfinger_hidden_when_federation_disabled(client, services, federated_alice) -> None:
    """With federation switched off the endpoint does not exist."""
    services.config = dataclasses.replace(services.config, enabled=False)
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:alice@social.example"}
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_webfinger_does_not_provision_instance_actor(client, db_session) -> None:
    """Lookups never write; an unprovisioned instance actor is simply absent."""
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:stage@social.example"}
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert db_session.query(Actor).count() == 0
