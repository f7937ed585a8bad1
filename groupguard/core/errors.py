"""Platform error taxonomy shared by the engine and its adapters."""

from __future__ import annotations

RATE_LIMIT_MARKERS = ("rate-overlimit", "rate_overlimit", "rate limit")


class PlatformError(RuntimeError):
    """Base class for failures reported by the messaging platform."""


class TransientPlatformError(PlatformError):
    """Network hiccup, timeout or throttling; a later attempt may succeed."""


class RateLimitedError(TransientPlatformError):
    """The platform rejected a call for exceeding its per-account rate limit."""


class PermissionDeniedError(PlatformError):
    """The operator account lacks admin rights in the group."""


class ParticipantNotFoundError(PlatformError):
    """The participant is no longer a member of the group."""


class GroupListingError(PlatformError):
    """The operator's group list could not be fetched at all."""


def is_rate_limit_error(exc: BaseException) -> bool:
    """Whether ``exc`` signals platform rate limiting."""
    if isinstance(exc, RateLimitedError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)
