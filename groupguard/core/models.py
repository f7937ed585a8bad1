"""Domain models for cross-group moderation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, TypeAlias

GroupId: TypeAlias = str
AdminRole: TypeAlias = Literal["none", "admin", "owner"]
OutcomeStatus: TypeAlias = Literal["success", "failed", "skipped", "error"]
FailureKind: TypeAlias = Literal["permission_denied", "not_found", "transient", "unknown"]


@dataclass(frozen=True, slots=True, kw_only=True)
class TargetIdentity:
    """The actor being removed, as normalized and (optionally) resolved."""

    raw_reference: str
    normalized_key: str
    resolved_phone: str | None = None

    @property
    def checkpoint_key(self) -> str:
        """Storage key shared by every stable-domain spelling of the target."""
        from groupguard.identity.jid import canonical_key

        return canonical_key(self.normalized_key)


@dataclass(frozen=True, slots=True, kw_only=True)
class ParticipantRecord:
    """One member of a group as exposed by the platform."""

    id: str
    phone_number: str | None = None
    admin_role: AdminRole = "none"


@dataclass(frozen=True, slots=True, kw_only=True)
class GroupRecord:
    """A group the operator participates in, fetched fresh per invocation."""

    group_id: GroupId
    name: str
    participants: tuple[ParticipantRecord, ...] = ()

    @property
    def member_count(self) -> int:
        return len(self.participants)


@dataclass(frozen=True, slots=True, kw_only=True)
class ProcessedGroupsState:
    """Checkpoint summary for one target's moderation campaign."""

    target_key: str
    is_tracked: bool
    processed_group_ids: frozenset[GroupId] = frozenset()
    total_processed: int = 0
    last_updated: datetime | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class GroupOutcome:
    """Per-group result line of a propagation report."""

    group_id: GroupId
    group_name: str
    status: OutcomeStatus
    reason: str
    match_strategy: int | None = None
    failure_kind: FailureKind | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SelectionEntry:
    """One operator-facing row of the interactive selection menu."""

    index: int
    group_id: GroupId
    group_name: str
    member_count: int


@dataclass(frozen=True, slots=True, kw_only=True)
class ContinuationToken:
    """Groups selected for a run that were not processed before it stopped."""

    target_key: str
    pending_group_ids: tuple[GroupId, ...]
    group_names: tuple[tuple[GroupId, str], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.pending_group_ids


@dataclass(slots=True, kw_only=True)
class PropagationReport:
    """Transient summary of one scheduler invocation."""

    target_key: str
    mode: Literal["campaign", "selection"] = "campaign"
    total_groups_available: int = 0
    groups_selected: int = 0
    groups_processed_this_run: int = 0
    groups_where_target_found: int = 0
    successful_removals: int = 0
    failed_removals: int = 0
    skipped_groups: int = 0
    error_groups: int = 0
    remaining_groups: int = 0
    limit_reached: bool = False
    all_groups_processed: bool = False
    interrupted: bool = False
    error: str | None = None
    details: list[GroupOutcome] = field(default_factory=list)

    @property
    def is_fatal(self) -> bool:
        return self.error is not None

    def record(self, outcome: GroupOutcome) -> None:
        """Append one outcome and update the aggregate counters."""
        self.details.append(outcome)
        self.groups_processed_this_run += 1
        if outcome.status == "success":
            self.groups_where_target_found += 1
            self.successful_removals += 1
        elif outcome.status == "failed":
            self.groups_where_target_found += 1
            self.failed_removals += 1
        elif outcome.status == "skipped":
            self.skipped_groups += 1
        else:
            self.error_groups += 1

    def privilege_failures(self) -> list[GroupOutcome]:
        return [d for d in self.details if d.status == "failed" and d.failure_kind == "permission_denied"]
