"""Typed core domain primitives and collaborator ports."""

from groupguard.core.errors import (
    GroupListingError,
    ParticipantNotFoundError,
    PermissionDeniedError,
    PlatformError,
    RateLimitedError,
    TransientPlatformError,
    is_rate_limit_error,
)
from groupguard.core.models import (
    ContinuationToken,
    GroupOutcome,
    GroupRecord,
    ParticipantRecord,
    ProcessedGroupsState,
    PropagationReport,
    SelectionEntry,
    TargetIdentity,
)

__all__ = [
    "ContinuationToken",
    "GroupListingError",
    "GroupOutcome",
    "GroupRecord",
    "ParticipantNotFoundError",
    "ParticipantRecord",
    "PermissionDeniedError",
    "PlatformError",
    "ProcessedGroupsState",
    "PropagationReport",
    "RateLimitedError",
    "SelectionEntry",
    "TargetIdentity",
    "TransientPlatformError",
    "is_rate_limit_error",
]
