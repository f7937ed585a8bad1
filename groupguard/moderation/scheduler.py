"""Batch propagation of one removal across the operator's groups.

Groups are processed strictly one after another: the platform's rate limits
are per account, so parallel processing would only hit them sooner. Every
platform call is awaited before the next step starts, and pacing delays keep
the job under the platform's unpublished thresholds.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias

from loguru import logger

from groupguard.config.schema import PacingConfig
from groupguard.core.errors import (
    GroupListingError,
    ParticipantNotFoundError,
    PermissionDeniedError,
    TransientPlatformError,
    is_rate_limit_error,
)
from groupguard.core.models import (
    ContinuationToken,
    GroupOutcome,
    GroupRecord,
    PropagationReport,
    SelectionEntry,
    TargetIdentity,
)
from groupguard.core.ports import GroupDirectoryPort, KickExecutorPort
from groupguard.moderation.matcher import MatchResult, match_participant
from groupguard.storage.audit import RemovalAuditStore
from groupguard.storage.checkpoints import CheckpointStore

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]

DEFAULT_CAP = 10
UNKNOWN_GROUP_NAME = "Unknown Group"


@dataclass(frozen=True, slots=True)
class PacingPolicy:
    """Delays (seconds) between platform calls."""

    metadata_delay_s: float = 3.0
    removal_delay_s: float = 2.0
    extended_pause_every: int = 3
    extended_pause_s: float = 20.0
    rate_limit_backoff_s: float = 15.0
    listing_delay_s: float = 0.5

    @classmethod
    def from_config(cls, config: PacingConfig) -> PacingPolicy:
        return cls(
            metadata_delay_s=config.metadata_delay_ms / 1000.0,
            removal_delay_s=config.removal_delay_ms / 1000.0,
            extended_pause_every=config.extended_pause_every,
            extended_pause_s=config.extended_pause_ms / 1000.0,
            rate_limit_backoff_s=config.rate_limit_backoff_ms / 1000.0,
            listing_delay_s=config.listing_delay_ms / 1000.0,
        )

    def extended_pause_due(self, processed_count: int) -> bool:
        every = self.extended_pause_every
        return every > 0 and processed_count > 0 and processed_count % every == 0


class PropagationRun:
    """Resumable step-function over the groups selected for one invocation.

    Call :meth:`step` until :attr:`done`, then :meth:`finish`. A host may stop
    between steps; :meth:`continuation` then describes what was left.
    """

    def __init__(
        self,
        scheduler: PropagationScheduler,
        *,
        target: TargetIdentity,
        report: PropagationReport,
        group_ids: list[str] | None = None,
        group_names: dict[str, str] | None = None,
        checkpoint: bool = False,
        lease_owner: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self.target = target
        self.report = report
        self._pending: deque[str] = deque(group_ids or [])
        self._names = dict(group_names or {})
        self._checkpoint = checkpoint
        self._lease_owner = lease_owner
        self._processed = 0
        self._finished = False

    @property
    def done(self) -> bool:
        return self._finished or not self._pending

    @property
    def pending_group_ids(self) -> tuple[str, ...]:
        return tuple(self._pending)

    async def step(self) -> GroupOutcome | None:
        """Process the next group; returns None when nothing is left."""
        if self.done:
            return None
        group_id = self._pending.popleft()
        self._processed += 1
        outcome = await self._scheduler.process_group(
            self.target,
            group_id,
            fallback_name=self._names.get(group_id, UNKNOWN_GROUP_NAME),
            checkpoint=self._checkpoint,
        )
        self.report.record(outcome)

        if self._processed % 5 == 0:
            logger.info(
                "Propagation progress: {}/{} groups checked",
                self._processed,
                self._processed + len(self._pending),
            )
        if self._pending and self._scheduler.pacing.extended_pause_due(self._processed):
            logger.info(
                "Pausing {:.0f}s after {} groups to avoid rate limiting",
                self._scheduler.pacing.extended_pause_s,
                self._processed,
            )
            await self._scheduler.pause(self._scheduler.pacing.extended_pause_s)
        return outcome

    def continuation(self) -> ContinuationToken:
        return ContinuationToken(
            target_key=self.target.checkpoint_key,
            pending_group_ids=tuple(self._pending),
            group_names=tuple((gid, self._names.get(gid, UNKNOWN_GROUP_NAME)) for gid in self._pending),
        )

    def finish(self) -> PropagationReport:
        """Close the run, release the campaign lease and return the report."""
        if self._finished:
            return self.report
        self._finished = True
        if self._pending:
            self.report.interrupted = True
            self.report.remaining_groups += len(self._pending)
            logger.info(
                "Propagation for {} stopped with {} selected group(s) unprocessed",
                self.target.checkpoint_key,
                len(self._pending),
            )
        self._scheduler.release(self.target, self._lease_owner)

        report = self.report
        if not report.is_fatal and not report.all_groups_processed:
            logger.info(
                "Propagation complete for {}: processed={} found={} removed={} failed={} "
                "not_member={} errors={} limit_reached={}",
                report.target_key,
                report.groups_processed_this_run,
                report.groups_where_target_found,
                report.successful_removals,
                report.failed_removals,
                report.skipped_groups,
                report.error_groups,
                report.limit_reached,
            )
        return report


class PropagationScheduler:
    """Drives removal of one target across the operator's groups."""

    def __init__(
        self,
        *,
        directory: GroupDirectoryPort,
        kicker: KickExecutorPort,
        checkpoints: CheckpointStore | None = None,
        audit: RemovalAuditStore | None = None,
        pacing: PacingPolicy | None = None,
        lease_ttl_seconds: float = 3600.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._directory = directory
        self._kicker = kicker
        self._checkpoints = checkpoints
        self._audit = audit
        self.pacing = pacing or PacingPolicy()
        self._lease_ttl_seconds = lease_ttl_seconds
        self._sleep = sleep

    # ── Entry points ─────────────────────────────────────────────────

    async def run(self, target: TargetIdentity, *, cap: int = DEFAULT_CAP) -> PropagationReport:
        """Process up to ``cap`` unprocessed groups and checkpoint the results."""
        run = await self.prepare(target, cap=cap)
        try:
            while not run.done:
                await run.step()
        finally:
            report = run.finish()
        return report

    async def prepare(self, target: TargetIdentity, *, cap: int = DEFAULT_CAP) -> PropagationRun:
        """Compute this invocation's work set without processing any group.

        Degenerate invocations (lease busy, listing failed, nothing left) come
        back as an already-done run whose report explains why.
        """
        cap = max(1, int(cap))
        report = PropagationReport(target_key=target.checkpoint_key, mode="campaign")
        logger.info("Starting propagation for {} (cap={} groups)", target.checkpoint_key, cap)

        owner = self._acquire(target)
        if owner is None:
            report.error = f"A propagation campaign for {target.checkpoint_key} is already running"
            logger.warning(report.error)
            return PropagationRun(self, target=target, report=report)

        try:
            groups = await self._list_groups()
        except GroupListingError as e:
            logger.error(f"Propagation for {target.checkpoint_key} aborted: {e}")
            report.error = str(e)
            return PropagationRun(self, target=target, report=report, lease_owner=owner)

        report.total_groups_available = len(groups)
        processed = self._checkpoints.get_processed_groups(target) if self._checkpoints else set()
        remaining = [gid for gid in groups if gid not in processed]
        logger.info(
            "Found {} groups; {} already processed, {} remaining",
            len(groups),
            len(groups) - len(remaining),
            len(remaining),
        )

        if not remaining:
            logger.info(f"All groups already processed for {target.checkpoint_key}")
            report.all_groups_processed = True
            return PropagationRun(self, target=target, report=report, lease_owner=owner)

        if len(remaining) > cap:
            logger.info(f"Safety cap: limiting to {cap} of {len(remaining)} remaining groups")
            report.limit_reached = True
        selected = remaining[:cap]
        report.groups_selected = len(selected)
        report.remaining_groups = len(remaining) - len(selected)

        return PropagationRun(
            self,
            target=target,
            report=report,
            group_ids=selected,
            group_names={gid: groups[gid].name or UNKNOWN_GROUP_NAME for gid in selected},
            checkpoint=True,
            lease_owner=owner,
        )

    async def resume(self, target: TargetIdentity, token: ContinuationToken) -> PropagationReport:
        """Process the groups an interrupted run left behind."""
        if token.target_key != target.checkpoint_key:
            raise ValueError(
                f"Continuation token belongs to {token.target_key}, not {target.checkpoint_key}"
            )
        report = PropagationReport(
            target_key=target.checkpoint_key,
            mode="campaign",
            total_groups_available=len(token.pending_group_ids),
            groups_selected=len(token.pending_group_ids),
        )
        owner = self._acquire(target)
        if owner is None:
            report.error = f"A propagation campaign for {target.checkpoint_key} is already running"
            return report
        run = PropagationRun(
            self,
            target=target,
            report=report,
            group_ids=list(token.pending_group_ids),
            group_names=dict(token.group_names),
            checkpoint=True,
            lease_owner=owner,
        )
        try:
            while not run.done:
                await run.step()
        finally:
            report = run.finish()
        return report

    async def execute_selection(
        self,
        target: TargetIdentity,
        group_ids: list[str],
        *,
        group_names: dict[str, str] | None = None,
    ) -> PropagationReport:
        """Remove ``target`` from exactly ``group_ids``; the checkpoint store is not touched."""
        unique_ids = list(dict.fromkeys(gid for gid in group_ids if gid))
        report = PropagationReport(
            target_key=target.checkpoint_key,
            mode="selection",
            total_groups_available=len(unique_ids),
            groups_selected=len(unique_ids),
        )
        logger.info("Executing removal of {} on {} selected group(s)", target.checkpoint_key, len(unique_ids))
        run = PropagationRun(
            self,
            target=target,
            report=report,
            group_ids=unique_ids,
            group_names=group_names,
            checkpoint=False,
        )
        try:
            while not run.done:
                await run.step()
        finally:
            report = run.finish()
        return report

    async def scan_membership(self, target: TargetIdentity) -> list[tuple[GroupRecord, MatchResult]]:
        """Fetch every group and return those containing ``target``, in platform order."""
        groups = await self._list_groups()
        found: list[tuple[GroupRecord, MatchResult]] = []
        for position, group_id in enumerate(groups, start=1):
            try:
                group = await self._directory.fetch_group_metadata(group_id)
            except Exception as e:
                logger.warning(f"Error checking group {group_id}: {e}")
                if is_rate_limit_error(e):
                    await self._backoff()
                continue
            finally:
                await self.pause(self.pacing.listing_delay_s)

            match = match_participant(target, group)
            if match is not None:
                found.append((group, match))
            if position < len(groups) and self.pacing.extended_pause_due(position):
                await self.pause(self.pacing.extended_pause_s)
        logger.info(f"{target.checkpoint_key} found in {len(found)} of {len(groups)} groups")
        return found

    async def list_candidates(self, target: TargetIdentity) -> list[SelectionEntry]:
        """Numbered (1-based) list of groups that contain ``target``."""
        found = await self.scan_membership(target)
        return [
            SelectionEntry(
                index=index,
                group_id=group.group_id,
                group_name=group.name or UNKNOWN_GROUP_NAME,
                member_count=group.member_count,
            )
            for index, (group, _match) in enumerate(found, start=1)
        ]

    # ── Per-group processing ─────────────────────────────────────────

    async def process_group(
        self,
        target: TargetIdentity,
        group_id: str,
        *,
        fallback_name: str = UNKNOWN_GROUP_NAME,
        checkpoint: bool = False,
    ) -> GroupOutcome:
        """Fetch, match and remove for one group. Never raises for platform errors."""
        try:
            group = await self._directory.fetch_group_metadata(group_id)
        except Exception as e:
            await self.pause(self.pacing.metadata_delay_s)
            logger.warning(f"Error processing group {fallback_name} ({group_id}): {e}")
            if is_rate_limit_error(e):
                await self._backoff()
            return GroupOutcome(
                group_id=group_id,
                group_name=fallback_name,
                status="error",
                reason=f"Failed to fetch group data: {e}",
                failure_kind="transient",
            )
        await self.pause(self.pacing.metadata_delay_s)

        name = group.name or fallback_name
        match = match_participant(target, group)
        if match is None:
            if checkpoint:
                self._checkpoint(target, group_id)
            return GroupOutcome(
                group_id=group_id,
                group_name=name,
                status="skipped",
                reason="Target not a member",
            )

        logger.info(f"Found {target.checkpoint_key} in group {name}; attempting removal")
        if match.is_heuristic:
            self._audit_row(target, group_id, name, "matched", "Heuristic phone-suffix match", match)

        outcome = await self._remove(target, group_id, name, match)
        self._audit_row(target, group_id, name, outcome.status, outcome.reason, match)
        if checkpoint and (outcome.status == "success" or outcome.failure_kind == "not_found"):
            self._checkpoint(target, group_id)
        return outcome

    async def _remove(
        self,
        target: TargetIdentity,
        group_id: str,
        name: str,
        match: MatchResult,
    ) -> GroupOutcome:
        def failed(reason: str, kind: str) -> GroupOutcome:
            logger.warning(f"Failed to remove {target.checkpoint_key} from {name}: {reason}")
            return GroupOutcome(
                group_id=group_id,
                group_name=name,
                status="failed",
                reason=reason,
                match_strategy=int(match.strategy),
                failure_kind=kind,
            )

        try:
            await self._kicker.remove_participant(group_id, match.participant.id)
        except PermissionDeniedError as e:
            return failed(str(e) or "Insufficient privileges to remove participant", "permission_denied")
        except ParticipantNotFoundError as e:
            return failed(str(e) or "Participant already left the group", "not_found")
        except Exception as e:
            kind = "transient" if isinstance(e, TransientPlatformError) else "unknown"
            outcome = failed(str(e) or e.__class__.__name__, kind)
            if is_rate_limit_error(e):
                await self._backoff()
            return outcome

        logger.info(f"Removed {target.checkpoint_key} from {name}")
        await self.pause(self.pacing.removal_delay_s)
        return GroupOutcome(
            group_id=group_id,
            group_name=name,
            status="success",
            reason="Removed successfully",
            match_strategy=int(match.strategy),
        )

    # ── Internals ────────────────────────────────────────────────────

    async def pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    async def _backoff(self) -> None:
        logger.warning(
            "Rate limited; waiting {:.0f}s before continuing",
            self.pacing.rate_limit_backoff_s,
        )
        await self.pause(self.pacing.rate_limit_backoff_s)

    async def _list_groups(self) -> dict[str, GroupRecord]:
        try:
            return await self._directory.list_administered_groups()
        except GroupListingError:
            raise
        except Exception as e:
            raise GroupListingError(f"Failed to fetch group list: {e}") from e

    def _checkpoint(self, target: TargetIdentity, group_id: str) -> None:
        if self._checkpoints is None:
            return
        if not self._checkpoints.add_processed_groups(target, [group_id]):
            logger.warning(
                "Checkpoint write failed for {} / {}; group may be reprocessed later",
                target.checkpoint_key,
                group_id,
            )

    def _acquire(self, target: TargetIdentity) -> str | None:
        owner = uuid.uuid4().hex
        if self._checkpoints is None:
            return owner
        if self._checkpoints.acquire_lease(target, owner, self._lease_ttl_seconds):
            return owner
        return None

    def release(self, target: TargetIdentity, owner: str | None) -> None:
        if owner is not None and self._checkpoints is not None:
            self._checkpoints.release_lease(target, owner)

    def _audit_row(
        self,
        target: TargetIdentity,
        group_id: str,
        group_name: str,
        status: str,
        reason: str,
        match: MatchResult,
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(
            target_key=target.checkpoint_key,
            group_id=group_id,
            group_name=group_name,
            status=status,
            reason=reason,
            match_strategy=int(match.strategy),
            participant_id=match.participant.id,
        )
