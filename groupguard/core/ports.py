"""Port interfaces for the platform collaborators the engine consumes."""

from __future__ import annotations

from typing import Protocol

from groupguard.core.models import GroupRecord


class GroupDirectoryPort(Protocol):
    """Lists the operator's groups and fetches fresh group metadata."""

    async def list_administered_groups(self) -> dict[str, GroupRecord]:
        """Return every group the operator participates in, in platform order."""

    async def fetch_group_metadata(self, group_id: str) -> GroupRecord:
        """Fetch current name and participants for one group."""


class KickExecutorPort(Protocol):
    """Removes one participant from one group.

    Implementations retry transient failures themselves and raise
    :class:`~groupguard.core.errors.PermissionDeniedError`,
    :class:`~groupguard.core.errors.ParticipantNotFoundError` or
    :class:`~groupguard.core.errors.TransientPlatformError` when they give up.
    """

    async def remove_participant(self, group_id: str, participant_id: str) -> None:
        """Remove ``participant_id`` from ``group_id``."""


class IdentityMappingPort(Protocol):
    """Live anonymized-id to phone lookup."""

    async def resolve_lid(self, lid_user: str) -> str | None:
        """Return the phone-derived identifier for ``lid_user``, or None."""
