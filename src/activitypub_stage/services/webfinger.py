"""WebFinger (RFC 7033) resolution for local actors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import ActorNotFound, MalformedRequest
from activitypub_stage.models import Actor, ActorKind
from activitypub_stage.services.actors import ActorDirectory

JRD_CONTENT_TYPE = "application/jrd+json"
PROFILE_PAGE_REL = "http://webfinger.net/rel/profile-page"


@dataclass(frozen=True)
class AccountResource:
    """Parsed `acct:` resource."""

    kind: ActorKind
    username: str
    domain: str


class WebFingerResolver:
    """Maps `acct:` resources onto local actors and renders JRD documents."""

    def __init__(self, config: FederationConfig, directory: ActorDirectory) -> None:
        self.config = config
        self.directory = directory

    def parse(self, resource: str) -> AccountResource | str:
        """Split a resource into its parts.

        Returns either an `AccountResource` or, for `https://` resources, the
        URL itself.

        Raises:
            MalformedRequest: The resource matches no accepted grammar.
        """
        resource = (resource or "").strip()
        if not resource:
            raise MalformedRequest("missing resource")

        if resource.startswith(("https://", "http://")):
            return resource

        if not resource.startswith("acct:"):
            raise MalformedRequest(f"unsupported resource scheme: {resource!r}")

        account = resource[len("acct:"):]
        kind = ActorKind.USER
        if account.startswith("!"):
            kind = ActorKind.GROUP
            account = account[1:]

        username, sep, domain = account.partition("@")
        if not sep or not username or not domain or "@" in domain:
            raise MalformedRequest(f"malformed acct resource: {resource!r}")
        return AccountResource(kind=kind, username=username, domain=domain.lower())

    def resolve(self, db: Session, resource: str) -> Actor:
        """Return the active actor named by `resource`.

        Raises:
            MalformedRequest: Unparsable resource.
            ActorNotFound: Foreign domain, unknown or inactive actor.
        """
        parsed = self.parse(resource)

        if isinstance(parsed, str):
            instance = self.directory.instance_actor(db)
            if parsed.rstrip("/") != instance.actor_uri:
                raise ActorNotFound(parsed)
            return instance

        if parsed.domain not in self.config.local_hosts:
            raise ActorNotFound(f"foreign domain {parsed.domain}")

        if parsed.kind is ActorKind.USER and parsed.username == self.config.instance_username:
            return self.directory.instance_actor(db)

        return self.directory.resolve(db, parsed.kind, parsed.username)

    def handle(self, actor: Actor) -> str:
        """`@user@host` for people and the instance, `!group@host` for groups."""
        prefix = actor.kind.handle_prefix or "@"
        return f"{prefix}{actor.username}@{self.config.public_host}"

    def profile_url(self, actor: Actor) -> str:
        client_url = self.config.client_url
        if actor.kind is ActorKind.USER:
            return f"{client_url}/u/{actor.username}"
        if actor.kind is ActorKind.GROUP:
            return f"{client_url}/r/{actor.username}"
        return client_url

    def render(self, actor: Actor) -> dict[str, Any]:
        """Build the JRD document for `actor`."""
        host = self.config.public_host
        return {
            "subject": f"acct:{actor.kind.handle_prefix}{actor.username}@{host}",
            "aliases": [actor.actor_uri],
            "links": [
                {
                    "rel": "self",
                    "type": "application/activity+json",
                    "href": actor.actor_uri,
                },
                {
                    "rel": PROFILE_PAGE_REL,
                    "type": "text/html",
                    "href": self.profile_url(actor),
                },
            ],
        }
