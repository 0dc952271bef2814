"""Federation error taxonomy.

Every error that can cross the HTTP boundary carries its status code and a
generic public message. Details (remote hosts, upstream bodies) stay in logs.
"""

from __future__ import annotations

from fastapi import status


class FederationError(RuntimeError):
    """Base exception raised for federation failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Federation error"


class MalformedRequest(FederationError):
    """Bad JSON, missing required field or unparsable resource."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Malformed request"


class SignatureInvalid(FederationError):
    """HTTP signature verification failed while enforcement is on."""

    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid HTTP Signature"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ActorNotFound(FederationError):
    """No active local actor matches the lookup."""

    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Actor not found"


class NotEligible(FederationError):
    """The post, user or sub does not participate in federation.

    Reported as a plain 404 so private content is indistinguishable from
    missing content.
    """

    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Not found"


class BlockedInstanceError(FederationError):
    """The remote domain is blocked. Callers drop the work silently."""

    def __init__(self, domain: str) -> None:
        super().__init__(domain)
        self.domain = domain


class DeliveryError(FederationError):
    """Base class for outbound delivery failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.http_status = status_code


class DeliveryTransientFailure(DeliveryError):
    """Timeout, connection error, 429 or 5xx; retried with backoff."""


class DeliveryPermanentFailure(DeliveryError):
    """4xx (other than 429) or an invalid destination; never retried."""
