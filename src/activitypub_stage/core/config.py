"""Immutable federation configuration injected into federation components.

`Settings` is the process-wide source of truth; `FederationConfig` is the
frozen snapshot every service receives at construction. Tests build their own
instances instead of mutating global settings.

Example:
    from activitypub_stage.core.config import load_federation_config
    config = load_federation_config()
    print(config.actor_base_url)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from activitypub_stage.core.settings import Settings, settings


@dataclass(frozen=True)
class FederationConfig:
    """Federation-relevant configuration values."""

    enabled: bool
    domain: str
    public_domain: str
    client_url: str
    instance_username: str
    instance_name: str
    auto_accept_follows: bool = True
    allow_private_addresses: bool = False
    signature_enforce: bool = True
    signature_log_failures: bool = True
    signature_clock_skew_seconds: int = 300
    remote_key_cache_backend: str = "memory"
    remote_key_cache_ttl_seconds: int = 3600
    remote_key_cache_max_entries: int = 4096
    remote_fetch_timeout_seconds: float = 5.0
    redis_url: str = "redis://localhost:6379"
    delivery_concurrency: int = 16
    delivery_timeout_seconds: float = 5.0
    delivery_max_attempts: int = 5
    delivery_backoff_seconds: tuple[int, ...] = field(default=(60, 300, 1800, 7200))
    delivery_batch_size: int = 200
    delivery_poll_interval_seconds: float = 2.0
    delivery_log_retention_days: int = 7
    delivery_cleanup_interval_seconds: float = 3600.0

    @property
    def actor_base_url(self) -> str:
        """Prefix under which every ActivityPub document is served."""
        return f"{self.domain}/activitypub"

    @property
    def api_host(self) -> str:
        return urlparse(self.domain).hostname or ""

    @property
    def public_host(self) -> str:
        return urlparse(self.public_domain).hostname or ""

    @property
    def local_hosts(self) -> frozenset[str]:
        """Hosts that identify this deployment in handles and URIs."""
        return frozenset(host for host in (self.api_host, self.public_host) if host)

    def backoff_for(self, attempts: int) -> int:
        """Return the retry delay in seconds after `attempts` failed attempts."""
        if not self.delivery_backoff_seconds:
            return 60
        index = min(max(attempts, 1), len(self.delivery_backoff_seconds)) - 1
        return self.delivery_backoff_seconds[index]


def load_federation_config(source: Settings | None = None) -> FederationConfig:
    """Build configuration object from global settings."""

    source = source or settings
    domain = source.federation_domain.rstrip("/")
    public_domain = (source.federation_public_domain or domain).rstrip("/")
    return FederationConfig(
        enabled=source.federation_enabled,
        domain=domain,
        public_domain=public_domain,
        client_url=(source.client_url or public_domain).rstrip("/"),
        instance_username=source.instance_actor_username,
        instance_name=source.instance_actor_name,
        auto_accept_follows=source.auto_accept_follows,
        allow_private_addresses=source.allow_private_addresses,
        signature_enforce=source.signature_enforce,
        signature_log_failures=source.signature_log_failures,
        signature_clock_skew_seconds=source.signature_clock_skew_seconds,
        remote_key_cache_backend=source.remote_key_cache_backend,
        remote_key_cache_ttl_seconds=source.remote_key_cache_ttl_seconds,
        remote_key_cache_max_entries=source.remote_key_cache_max_entries,
        remote_fetch_timeout_seconds=float(source.remote_fetch_timeout_seconds),
        redis_url=source.redis_url,
        delivery_concurrency=max(1, source.delivery_concurrency),
        delivery_timeout_seconds=float(source.delivery_timeout_seconds),
        delivery_max_attempts=max(1, source.delivery_max_attempts),
        delivery_backoff_seconds=tuple(source.delivery_backoff_seconds),
        delivery_batch_size=source.delivery_batch_size,
        delivery_poll_interval_seconds=float(source.delivery_poll_interval_seconds),
        delivery_log_retention_days=source.delivery_log_retention_days,
        delivery_cleanup_interval_seconds=float(source.delivery_cleanup_interval_seconds),
    )
