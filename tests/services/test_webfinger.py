"""Tests for WebFinger resource parsing and resolution."""

import pytest
from sqlalchemy.orm import Session

from activitypub_stage.core.errors import ActorNotFound, MalformedRequest
from activitypub_stage.models import Actor, ActorKind, Sub, User
from activitypub_stage.services import FederationServices
from activitypub_stage.services.webfinger import AccountResource


class TestParse:
    def test_user_account(self, services: FederationServices) -> None:
        parsed = services.webfinger.parse("acct:alice@Social.Example")
        assert parsed == AccountResource(ActorKind.USER, "alice", "social.example")

    def test_group_account(self, services: FederationServices) -> None:
        parsed = services.webfinger.parse("acct:!tech@social.example")
        assert parsed == AccountResource(ActorKind.GROUP, "tech", "social.example")

    def test_url_resource(self, services: FederationServices) -> None:
        url = "https://social.example/activitypub/actor"
        assert services.webfinger.parse(url) == url

    @pytest.mark.parametrize(
        "resource",
        ["", "alice@social.example", "acct:alice", "acct:@social.example", "acct:a@b@c", "mailto:x"],
    )
    def test_malformed(self, services: FederationServices, resource: str) -> None:
        with pytest.raises(MalformedRequest):
            services.webfinger.parse(resource)


def test_resolve_user(db_session: Session, services: FederationServices, alice: User) -> None:
    actor = services.gate.enable_user(db_session, alice)
    assert services.webfinger.resolve(db_session, "acct:alice@social.example").id == actor.id


def test_resolve_group(db_session: Session, services: FederationServices, sub: Sub) -> None:
    actor = services.gate.enable_sub(db_session, sub)
    assert services.webfinger.resolve(db_session, "acct:!tech@social.example").id == actor.id


def test_resolve_instance_by_username_and_url(
    db_session: Session, services: FederationServices, instance_actor: Actor
) -> None:
    by_name = services.webfinger.resolve(db_session, "acct:stage@social.example")
    by_url = services.webfinger.resolve(db_session, "https://social.example/activitypub/actor/")
    assert by_name.kind is ActorKind.INSTANCE
    assert by_url.id == by_name.id


def test_foreign_domain_is_not_found(
    db_session: Session, services: FederationServices, alice: User
) -> None:
    services.gate.enable_user(db_session, alice)
    with pytest.raises(ActorNotFound):
        services.webfinger.resolve(db_session, "acct:alice@elsewhere.example")


def test_disabled_user_is_not_found(
    db_session: Session, services: FederationServices, alice: User
) -> None:
    services.gate.enable_user(db_session, alice)
    services.gate.disable_user(db_session, alice)
    with pytest.raises(ActorNotFound):
        services.webfinger.resolve(db_session, "acct:alice@social.example")


def test_unknown_url_is_not_found(db_session: Session, services: FederationServices) -> None:
    with pytest.raises(ActorNotFound):
        services.webfinger.resolve(db_session, "https://social.example/activitypub/users/ghost")


def test_render_round_trips_to_actor(
    db_session: Session, services: FederationServices, sub: Sub
) -> None:
    actor = services.gate.enable_sub(db_session, sub)
    document = services.webfinger.render(actor)

    assert document["subject"] == "acct:!tech@social.example"
    assert document["aliases"] == [actor.actor_uri]
    self_link = next(link for link in document["links"] if link["rel"] == "self")
    assert self_link["href"] == actor.actor_uri
    assert self_link["type"] == "application/activity+json"
    profile = next(link for link in document["links"] if link["rel"] != "self")
    assert profile["href"] == "https://social.example/r/tech"

    resolved = services.webfinger.resolve(db_session, document["subject"])
    assert resolved.id == actor.id


def test_handles(db_session: Session, services: FederationServices, alice: User, sub: Sub) -> None:
    user_actor = services.gate.enable_user(db_session, alice)
    group_actor = services.gate.enable_sub(db_session, sub)
    assert services.webfinger.handle(user_actor) == "@alice@social.example"
    assert services.webfinger.handle(group_actor) == "!tech@social.example"


def test_unprovisioned_instance_is_not_found(
    db_session: Session, services: FederationServices
) -> None:
    for resource in ("acct:stage@social.example", "https://social.example/activitypub/actor"):
        with pytest.raises(ActorNotFound):
            services.webfinger.resolve(db_session, resource)
    assert db_session.query(Actor).count() == 0
