"""Validation of remote URLs before the service dereferences or POSTs to them."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlparse

from activitypub_stage.core.config import FederationConfig

_LOCAL_NAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})


class UnsafeURLError(ValueError):
    """The URL must not be fetched by the federation service."""


def host_of(url: str) -> str:
    """Lower-case hostname of `url`, or an empty string when absent."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def strip_fragment(url: str) -> str:
    """Drop the `#fragment` from a URL (key ids are `actor#main-key`)."""
    return url.split("#", 1)[0]


def ensure_fetchable(url: str, config: FederationConfig) -> str:
    """Return `url` when it is safe to request, otherwise raise `UnsafeURLError`.

    Only https is accepted, and hosts that name loopback, link-local or private
    ranges are refused unless `allow_private_addresses` is set (development and
    tests). Hostnames are not resolved here; the HTTP client never follows
    redirects so a public name cannot bounce the request inward.
    """
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise UnsafeURLError(f"unparsable url: {url!r}") from exc

    if parsed.scheme not in ("https", "http"):
        raise UnsafeURLError(f"unsupported scheme: {parsed.scheme!r}")

    host = (parsed.hostname or "").lower()
    if not host:
        raise UnsafeURLError("url has no host")

    if config.allow_private_addresses:
        return url

    if parsed.scheme != "https":
        raise UnsafeURLError("plain http is not allowed")
    if host in _LOCAL_NAMES or host.endswith(".localhost") or host.endswith(".local"):
        raise UnsafeURLError(f"local host refused: {host}")

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return url

    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    ):
        raise UnsafeURLError(f"private address refused: {host}")
    return url
