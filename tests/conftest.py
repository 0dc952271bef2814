# tests/conftest.py
from __future__ import annotations

import base64
import json
import os
from collections import defaultdict
from collections.abc import Callable, Generator, Iterator
from datetime import datetime
from itertools import count
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FEDERATION_ENABLED", "true")
os.environ.setdefault("FEDERATION_DOMAIN", "https://social.example")
os.environ.setdefault("DELIVERY_WORKER_ENABLED", "false")
os.environ.setdefault("PROVISION_INSTANCE_ON_STARTUP", "false")

from activitypub_stage.api.v1.dependencies import get_federation_services
from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.security import generate_rsa_keypair, rsa_sign
from activitypub_stage.core.settings import settings
from activitypub_stage.db.session import Base
from activitypub_stage.db.session import get_db as app_get_session
from activitypub_stage.db.time import utcnow
from activitypub_stage.main import app as fastapi_app
from activitypub_stage.models import Actor, Follower, Post, Sub, SubModerator, User
from activitypub_stage.models.post import POST_STATUS_PUBLISHED
from activitypub_stage.services import FederationServices
from activitypub_stage.services.gate import user_settings
from activitypub_stage.services.key_cache import MemoryKeyCache
from activitypub_stage.services.signatures import (
    ACTIVITY_JSON,
    SignedRequest,
    build_signing_string,
    compute_digest,
    http_date,
)
from activitypub_stage.services.urls import host_of

TEST_DB_URL = "sqlite://"
LOCAL_BASE = "https://social.example"
REMOTE_BASE = "https://remote.example"
TEST_HOST = "test"

_SLUG_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


# -- keys and the fake remote server --------------------------------------------


@pytest.fixture(scope="session")
def keypairs() -> list[tuple[str, str]]:
    """A few RSA keypairs generated once; key generation dominates test time otherwise."""
    return [generate_rsa_keypair() for _ in range(4)]


@pytest.fixture()
def keypair_factory(keypairs: list[tuple[str, str]]) -> Callable[[], tuple[str, str]]:
    counter = count()

    def _next() -> tuple[str, str]:
        return keypairs[next(counter) % len(keypairs)]

    return _next


class RemoteServer:
    """In-memory stand-in for remote ActivityPub servers behind `httpx.MockTransport`."""

    def __init__(self, keypair: tuple[str, str]) -> None:
        self.default_keypair = keypair
        self.documents: dict[str, dict[str, Any]] = {}
        self.private_keys: dict[str, str] = {}
        self.inbox_statuses: dict[str, list[int]] = defaultdict(list)
        self.received: list[httpx.Request] = []
        self.fetches: list[str] = []

    def add_actor(
        self,
        username: str,
        *,
        base: str = REMOTE_BASE,
        keypair: tuple[str, str] | None = None,
        shared_inbox: str | None = None,
    ) -> str:
        """Publish an actor document and return its URI."""
        private_pem, public_pem = keypair or self.default_keypair
        actor_uri = f"{base}/users/{username}"
        document: dict[str, Any] = {
            "@context": ["https://www.w3.org/ns/activitystreams"],
            "id": actor_uri,
            "type": "Person",
            "preferredUsername": username,
            "inbox": f"{actor_uri}/inbox",
            "publicKey": {
                "id": f"{actor_uri}#main-key",
                "owner": actor_uri,
                "publicKeyPem": public_pem,
            },
        }
        if shared_inbox:
            document["endpoints"] = {"sharedInbox": shared_inbox}
        self.documents[actor_uri] = document
        self.private_keys[actor_uri] = private_pem
        return actor_uri

    def rotate(self, actor_uri: str, keypair: tuple[str, str]) -> None:
        private_pem, public_pem = keypair
        self.documents[actor_uri]["publicKey"]["publicKeyPem"] = public_pem
        self.private_keys[actor_uri] = private_pem

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "GET":
            self.fetches.append(url)
            document = self.documents.get(url)
            if document is None:
                return httpx.Response(404)
            return httpx.Response(200, json=document)
        self.received.append(request)
        statuses = self.inbox_statuses.get(url)
        return httpx.Response(statuses.pop(0) if statuses else 202)

    def delivered_to(self, inbox: str) -> list[dict[str, Any]]:
        return [json.loads(req.content) for req in self.received if str(req.url) == inbox]

    def sign(
        self,
        actor_uri: str,
        path: str,
        body: bytes,
        *,
        date: datetime | None = None,
        host: str = TEST_HOST,
    ) -> dict[str, str]:
        """Headers a Mastodon-style server sends with a signed POST."""
        headers = {
            "Date": http_date(date or utcnow()),
            "Digest": compute_digest(body),
            "Content-Type": ACTIVITY_JSON,
        }
        names = ("(request-target)", "host", "date", "digest")
        lowered = {key.lower(): value for key, value in headers.items()}
        lowered["host"] = host
        signing_string = build_signing_string(names, "post", path, lowered.get)
        signature = base64.b64encode(
            rsa_sign(self.private_keys[actor_uri], signing_string.encode("utf-8"))
        ).decode("ascii")
        headers["Signature"] = (
            f'keyId="{actor_uri}#main-key",algorithm="rsa-sha256",'
            f'headers="{" ".join(names)}",signature="{signature}"'
        )
        return headers


@pytest.fixture()
def remote(keypairs: list[tuple[str, str]]) -> RemoteServer:
    return RemoteServer(keypairs[-1])


@pytest.fixture()
def federation_config() -> FederationConfig:
    return FederationConfig(
        enabled=True,
        domain=LOCAL_BASE,
        public_domain=LOCAL_BASE,
        client_url=LOCAL_BASE,
        instance_username="stage",
        instance_name="Stage Test",
    )


@pytest.fixture()
def services(
    federation_config: FederationConfig,
    remote: RemoteServer,
    keypair_factory: Callable[[], tuple[str, str]],
) -> FederationServices:
    transport = httpx.MockTransport(remote.handler)
    return FederationServices.build(
        federation_config,
        key_cache=MemoryKeyCache(ttl_seconds=300),
        fetch_client=httpx.AsyncClient(transport=transport),
        delivery_client=httpx.AsyncClient(transport=transport),
        keypair_factory=keypair_factory,
    )


# -- application -----------------------------------------------------------------


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI, db_session: Session, services: FederationServices
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_federation_services] = lambda: services
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_federation_services, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url=f"http://{TEST_HOST}") as test_client:
        yield test_client


# -- local content ---------------------------------------------------------------


def make_user(db: Session, username: str, *, is_admin: bool = False) -> User:
    user = User(username=username, display_name=username.title(), is_admin=is_admin)
    db.add(user)
    db.flush()
    return user


def make_post(
    db: Session,
    author: User,
    *,
    sub: Sub | None = None,
    title: str = "Hello fediverse",
    content: str | None = "First federated post",
    status: str = POST_STATUS_PUBLISHED,
) -> Post:
    post = Post(
        user_id=author.id,
        sub_id=sub.id if sub is not None else None,
        title=title,
        slug=f"post-{next(_SLUG_COUNTER)}",
        content=content,
        status=status,
        published_at=utcnow() if status == POST_STATUS_PUBLISHED else None,
    )
    db.add(post)
    db.flush()
    db.refresh(post)
    return post


def auth_headers(user: User) -> dict[str, str]:
    token = jwt.encode({"sub": str(user.id)}, settings.secret_key, algorithm=settings.jwt_algorithm)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def alice(db_session: Session) -> User:
    return make_user(db_session, "alice")


@pytest.fixture()
def carol(db_session: Session) -> User:
    return make_user(db_session, "carol")


@pytest.fixture()
def admin(db_session: Session) -> User:
    return make_user(db_session, "root", is_admin=True)


@pytest.fixture()
def sub(db_session: Session, carol: User) -> Sub:
    """A sub moderated by carol."""
    sub = Sub(name="tech", display_name="Technology", description="All things tech")
    db_session.add(sub)
    db_session.flush()
    db_session.add(SubModerator(sub_id=sub.id, user_id=carol.id))
    db_session.flush()
    return sub


@pytest.fixture()
def federated_alice(db_session: Session, services: FederationServices, alice: User) -> User:
    """alice with federation enabled and posts federating by default."""
    services.gate.enable_user(db_session, alice)
    user_settings(db_session, alice.id).default_federate_posts = True
    db_session.flush()
    return alice


@pytest.fixture()
def instance_actor(db_session: Session, services: FederationServices) -> Actor:
    """The instance actor as startup provisioning leaves it."""
    return services.directory.provision_instance(db_session)


@pytest.fixture()
def bob(remote: RemoteServer) -> str:
    """Actor URI of bob on the remote server."""
    return remote.add_actor("bob")


def make_follower(
    db: Session,
    actor: Actor,
    follower_uri: str,
    *,
    shared_inbox: str | None = None,
) -> Follower:
    follower = Follower(
        actor_id=actor.id,
        follower_uri=follower_uri,
        follower_inbox=f"{follower_uri}/inbox",
        follower_shared_inbox=shared_inbox,
        follower_domain=host_of(follower_uri),
        follower_username=follower_uri.rsplit("/", 1)[-1],
    )
    db.add(follower)
    db.flush()
    return follower


def signed_request(
    remote: RemoteServer,
    actor_uri: str,
    body: bytes,
    *,
    path: str = "/activitypub/inbox",
    date: datetime | None = None,
) -> SignedRequest:
    """A `SignedRequest` as the inbox endpoint would build it."""
    headers = remote.sign(actor_uri, path, body, date=date)
    headers["Host"] = TEST_HOST
    return SignedRequest(method="POST", path=path, headers=headers, body=body)
