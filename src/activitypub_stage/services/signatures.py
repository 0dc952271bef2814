"""HTTP Signatures (draft-cavage-http-signatures-12) for inbound and outbound requests.

The verifier works on a framework-neutral `SignedRequest` so the FastAPI
layer, the test suite and any future transport share one code path. Whether a
failed verification rejects the request is decided in exactly one place,
`SignaturePolicy`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import httpx

from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import SignatureInvalid
from activitypub_stage.core.security import rsa_sign, rsa_verify
from activitypub_stage.db.time import utcnow
from activitypub_stage.models import Actor
from activitypub_stage.services.key_cache import RemoteActorEntry, RemoteKeyCache
from activitypub_stage.services.urls import UnsafeURLError, ensure_fetchable, strip_fragment

logger = logging.getLogger(__name__)

ACTIVITY_JSON = "application/activity+json"
ACCEPT_ACTIVITY = 'application/activity+json, application/ld+json; profile="https://www.w3.org/ns/activitystreams"'

_SIGNATURE_PARAM = re.compile(r'(\w+)=(?:"([^"]*)"|([^\s,]+))')

# Signature algorithm -> digest used with RSA PKCS#1 v1.5.
_ALGORITHMS = {
    "rsa-sha256": "sha256",
    "rsa-sha512": "sha512",
    "hs2019": "sha256",
}

_DIGESTS: dict[str, Callable[[bytes], Any]] = {
    "SHA-256": hashlib.sha256,
    "SHA-512": hashlib.sha512,
}

DEFAULT_SIGNED_HEADERS = ("(request-target)", "host", "date")


class SignatureFailure(str, Enum):
    """Why a request failed verification."""

    MISSING_SIGNATURE = "missing_signature"
    UNKNOWN_KEY = "unknown_key"
    SIGNATURE_MISMATCH = "signature_mismatch"
    DIGEST_MISMATCH = "digest_mismatch"
    STALE_DATE = "stale_date"


@dataclass(frozen=True)
class SignedRequest:
    """The parts of an HTTP request covered by a signature.

    `path` includes the query string. Header names are matched
    case-insensitively.
    """

    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes = b""

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class SignatureResult:
    valid: bool
    key_id: str | None = None
    error: SignatureFailure | None = None
    signer: RemoteActorEntry | None = None

    @property
    def actor_uri(self) -> str | None:
        if self.signer is not None:
            return self.signer.actor_uri
        return strip_fragment(self.key_id) if self.key_id else None


@dataclass(frozen=True)
class SignatureParams:
    key_id: str
    algorithm: str
    headers: tuple[str, ...]
    signature: bytes
    created: str | None = None
    expires: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


def parse_signature_header(value: str | None) -> SignatureParams | None:
    """Parse a `Signature` header; return None when absent or malformed."""
    if not value:
        return None
    params: dict[str, str] = {}
    for match in _SIGNATURE_PARAM.finditer(value):
        params[match.group(1)] = match.group(2) if match.group(2) is not None else match.group(3)

    key_id = params.pop("keyId", None)
    raw_signature = params.pop("signature", None)
    if not key_id or not raw_signature:
        return None
    try:
        signature = base64.b64decode(raw_signature, validate=True)
    except (binascii.Error, ValueError):
        return None

    header_list = params.pop("headers", None)
    # Without a headers parameter only Date is signed.
    headers = tuple(header_list.lower().split()) if header_list else ("date",)
    return SignatureParams(
        key_id=key_id,
        algorithm=params.pop("algorithm", "hs2019").lower(),
        headers=headers,
        signature=signature,
        created=params.pop("created", None),
        expires=params.pop("expires", None),
        extra=params,
    )


def compute_digest(body: bytes, algorithm: str = "SHA-256") -> str:
    """Return a `Digest` header value such as `SHA-256=<base64>`."""
    hashed = _DIGESTS[algorithm](body).digest()
    return f"{algorithm}={base64.b64encode(hashed).decode('ascii')}"


def digest_matches(header: str | None, body: bytes) -> bool:
    """True when every supported digest in `header` matches `body`.

    At least one supported algorithm must be present.
    """
    if not header:
        return False
    checked = 0
    for part in header.split(","):
        name, sep, value = part.strip().partition("=")
        if not sep:
            continue
        algorithm = name.strip().upper()
        if algorithm not in _DIGESTS:
            continue
        if compute_digest(body, algorithm) != f"{algorithm}={value.strip()}":
            return False
        checked += 1
    return checked > 0


def build_signing_string(
    header_names: tuple[str, ...],
    method: str,
    path: str,
    lookup: Callable[[str], str | None],
    params: SignatureParams | None = None,
) -> str:
    """Rebuild the string the signer hashed.

    Raises:
        KeyError: A named header is missing from the request.
    """
    lines: list[str] = []
    for name in header_names:
        if name == "(request-target)":
            lines.append(f"(request-target): {method.lower()} {path}")
        elif name == "(created)" and params is not None and params.created:
            lines.append(f"(created): {params.created}")
        elif name == "(expires)" and params is not None and params.expires:
            lines.append(f"(expires): {params.expires}")
        else:
            value = lookup(name)
            if value is None:
                raise KeyError(name)
            lines.append(f"{name}: {value.strip()}")
    return "\n".join(lines)


def http_date(moment: datetime) -> str:
    """Format `moment` as an RFC 7231 IMF-fixdate."""
    return format_datetime(moment, usegmt=True)


class SignatureSigner:
    """Signs outbound requests on behalf of local actors."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow

    def sign(
        self,
        actor: Actor,
        method: str,
        url: str,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Return `headers` extended with Host, Date, Digest and Signature."""
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        signed: dict[str, str] = dict(headers or {})
        signed["Host"] = parts.netloc
        signed["Date"] = http_date(self._clock())
        header_names = list(DEFAULT_SIGNED_HEADERS)
        if body is not None:
            signed["Digest"] = compute_digest(body)
            header_names.append("digest")

        lowered = {key.lower(): value for key, value in signed.items()}
        signing_string = build_signing_string(
            tuple(header_names), method, path, lowered.get
        )
        signature = base64.b64encode(
            rsa_sign(actor.private_key, signing_string.encode("utf-8"))
        ).decode("ascii")
        signed["Signature"] = (
            f'keyId="{actor.key_id}",algorithm="rsa-sha256",'
            f'headers="{" ".join(header_names)}",signature="{signature}"'
        )
        return signed


class RemoteActorFetcher:
    """Dereferences remote key ids and actor documents over HTTPS."""

    def __init__(
        self,
        config: FederationConfig,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._clock = clock or utcnow

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.remote_fetch_timeout_seconds),
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_json(self, url: str) -> dict[str, Any] | None:
        """GET an ActivityStreams document; None on any failure."""
        try:
            ensure_fetchable(url, self.config)
        except UnsafeURLError as exc:
            logger.warning("Refusing to fetch %s: %s", url, exc)
            return None

        try:
            response = await self._get_client().get(
                url, headers={"Accept": ACCEPT_ACTIVITY}, follow_redirects=False
            )
        except httpx.HTTPError as exc:
            logger.warning("Fetching %s failed: %s", url, exc)
            return None

        if response.status_code != httpx.codes.OK:
            logger.warning("Fetching %s returned %s", url, response.status_code)
            return None
        try:
            document = response.json()
        except ValueError:
            logger.warning("Fetching %s returned invalid JSON", url)
            return None
        return document if isinstance(document, dict) else None

    async def fetch_key(self, key_id: str) -> RemoteActorEntry | None:
        """Resolve `key_id` to the signer's PEM key and inbox locations."""
        document = await self.fetch_json(strip_fragment(key_id))
        if document is None:
            return None

        # Some servers publish keys as standalone documents owned by the actor.
        if "publicKeyPem" in document and isinstance(document.get("owner"), str):
            actor_document = await self.fetch_json(document["owner"])
            if actor_document is None:
                return None
            key_document: dict[str, Any] | None = document
        else:
            actor_document = document
            key_document = _select_key(document, key_id)

        if key_document is None or not isinstance(key_document.get("publicKeyPem"), str):
            logger.warning("No public key found for %s", key_id)
            return None

        actor_uri = actor_document.get("id")
        if not isinstance(actor_uri, str):
            return None
        endpoints = actor_document.get("endpoints")
        shared_inbox = endpoints.get("sharedInbox") if isinstance(endpoints, dict) else None
        inbox = actor_document.get("inbox")
        username = actor_document.get("preferredUsername")
        return RemoteActorEntry(
            key_id=key_id,
            actor_uri=actor_uri,
            public_key=key_document["publicKeyPem"],
            inbox=inbox if isinstance(inbox, str) else None,
            shared_inbox=shared_inbox if isinstance(shared_inbox, str) else None,
            username=username if isinstance(username, str) else None,
            fetched_at=self._clock().timestamp(),
        )


def _select_key(document: Mapping[str, Any], key_id: str) -> dict[str, Any] | None:
    candidates: list[Any] = []
    primary = document.get("publicKey")
    if isinstance(primary, list):
        candidates.extend(primary)
    elif primary is not None:
        candidates.append(primary)
    fallback = document.get("publicKeys")
    if isinstance(fallback, list):
        candidates.extend(fallback)

    keys = [key for key in candidates if isinstance(key, dict)]
    for key in keys:
        if key.get("id") == key_id:
            return key
    return keys[0] if keys else None


class HttpSignatureVerifier:
    """Verifies inbound `Signature` headers against remote public keys."""

    def __init__(
        self,
        config: FederationConfig,
        cache: RemoteKeyCache,
        fetcher: RemoteActorFetcher,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.fetcher = fetcher
        self._clock = clock or utcnow

    def _date_is_fresh(self, request: SignedRequest, params: SignatureParams) -> bool:
        skew = timedelta(seconds=self.config.signature_clock_skew_seconds)
        now = self._clock()

        if "(created)" in params.headers and params.created:
            try:
                created = datetime.fromtimestamp(int(params.created), tz=now.tzinfo)
            except (ValueError, OverflowError, OSError):
                return False
            if abs(now - created) > skew:
                return False
            if params.expires:
                try:
                    if int(params.expires) < now.timestamp():
                        return False
                except ValueError:
                    return False
            return True

        if "date" not in params.headers:
            return False
        raw_date = request.header("date")
        if not raw_date:
            return False
        try:
            sent = parsedate_to_datetime(raw_date)
        except (TypeError, ValueError):
            return False
        if sent.tzinfo is None:
            return False
        return abs(now - sent) <= skew

    def _signature_matches(
        self, entry: RemoteActorEntry, request: SignedRequest, params: SignatureParams
    ) -> bool:
        try:
            signing_string = build_signing_string(
                params.headers, request.method, request.path, request.header, params
            )
        except KeyError:
            return False
        return rsa_verify(
            entry.public_key,
            signing_string.encode("utf-8"),
            params.signature,
            _ALGORITHMS[params.algorithm],
        )

    async def verify(self, request: SignedRequest) -> SignatureResult:
        """Check the request's signature, date and digest.

        Never raises for a bad signature; the outcome is returned for
        `SignaturePolicy` to act on.
        """
        params = parse_signature_header(request.header("signature"))
        if params is None:
            return SignatureResult(False, error=SignatureFailure.MISSING_SIGNATURE)

        key_id = params.key_id
        if params.algorithm not in _ALGORITHMS:
            return SignatureResult(False, key_id, SignatureFailure.SIGNATURE_MISMATCH)

        if not self._date_is_fresh(request, params):
            return SignatureResult(False, key_id, SignatureFailure.STALE_DATE)

        if request.body:
            if "digest" not in params.headers:
                return SignatureResult(False, key_id, SignatureFailure.DIGEST_MISMATCH)
            if not digest_matches(request.header("digest"), request.body):
                return SignatureResult(False, key_id, SignatureFailure.DIGEST_MISMATCH)

        entry = await self.cache.get_or_fetch(key_id, self.fetcher.fetch_key)
        if entry is None:
            return SignatureResult(False, key_id, SignatureFailure.UNKNOWN_KEY)

        if self._signature_matches(entry, request, params):
            return SignatureResult(True, key_id, signer=entry)

        # The remote may have rotated its key since we cached it.
        self.cache.invalidate(key_id)
        refreshed = await self.cache.get_or_fetch(key_id, self.fetcher.fetch_key)
        if refreshed is not None and refreshed.public_key != entry.public_key:
            if self._signature_matches(refreshed, request, params):
                return SignatureResult(True, key_id, signer=refreshed)
        return SignatureResult(False, key_id, SignatureFailure.SIGNATURE_MISMATCH, entry)


class SignaturePolicy:
    """The single switch between rejecting and logging bad signatures."""

    def __init__(self, config: FederationConfig) -> None:
        self.enforce = config.signature_enforce
        self.log_failures = config.signature_log_failures

    def apply(
        self,
        result: SignatureResult,
        *,
        activity_id: str | None = None,
        actor_uri: str | None = None,
    ) -> None:
        """Raise `SignatureInvalid` when enforced; otherwise log and return."""
        if result.valid:
            return
        reason = result.error.value if result.error else SignatureFailure.MISSING_SIGNATURE.value
        if self.log_failures or self.enforce:
            logger.warning(
                "HTTP signature failure: reason=%s key_id=%s actor=%s activity=%s enforced=%s",
                reason,
                result.key_id,
                actor_uri,
                activity_id,
                self.enforce,
            )
        if self.enforce:
            raise SignatureInvalid(reason)
