"""Propagation API: the single entry point hosts call."""

from __future__ import annotations

from typing import Literal, TypeAlias

from loguru import logger

from groupguard.core.models import (
    ContinuationToken,
    ProcessedGroupsState,
    PropagationReport,
    SelectionEntry,
    TargetIdentity,
)
from groupguard.identity.resolver import LidResolver
from groupguard.moderation.scheduler import DEFAULT_CAP, PropagationRun, PropagationScheduler
from groupguard.moderation.selection import SelectionWorkflow
from groupguard.storage.checkpoints import CheckpointStore

TargetRef: TypeAlias = TargetIdentity | str


def _unresolved_report(
    target: TargetRef, mode: Literal["campaign", "selection"], error: Exception
) -> PropagationReport:
    logger.warning(f"Refusing to propagate for unusable reference {target!r}: {error}")
    return PropagationReport(target_key=str(target).strip(), mode=mode, error=str(error))


class PropagationService:
    """Resolve targets and drive campaign, selection and status operations."""

    def __init__(
        self,
        *,
        resolver: LidResolver,
        scheduler: PropagationScheduler,
        checkpoints: CheckpointStore,
        workflow: SelectionWorkflow | None = None,
        default_cap: int = DEFAULT_CAP,
    ) -> None:
        self.resolver = resolver
        self.scheduler = scheduler
        self.checkpoints = checkpoints
        self.workflow = workflow or SelectionWorkflow(scheduler)
        self.default_cap = default_cap

    async def resolve_target(self, target: TargetRef) -> TargetIdentity:
        if isinstance(target, TargetIdentity):
            return target
        return await self.resolver.resolve_target(target)

    async def run_propagation(self, target: TargetRef, cap: int | None = None) -> PropagationReport:
        try:
            identity = await self.resolve_target(target)
        except ValueError as e:
            return _unresolved_report(target, "campaign", e)
        return await self.scheduler.run(identity, cap=cap or self.default_cap)

    async def prepare_propagation(self, target: TargetRef, cap: int | None = None) -> PropagationRun:
        identity = await self.resolve_target(target)
        return await self.scheduler.prepare(identity, cap=cap or self.default_cap)

    async def resume_propagation(self, target: TargetRef, token: ContinuationToken) -> PropagationReport:
        try:
            identity = await self.resolve_target(target)
        except ValueError as e:
            return _unresolved_report(target, "campaign", e)
        return await self.scheduler.resume(identity, token)

    async def list_candidate_groups(self, target: TargetRef) -> list[SelectionEntry]:
        identity = await self.resolve_target(target)
        return await self.scheduler.list_candidates(identity)

    async def execute_selection(self, target: TargetRef, group_ids: list[str]) -> PropagationReport:
        try:
            identity = await self.resolve_target(target)
        except ValueError as e:
            return _unresolved_report(target, "selection", e)
        return await self.scheduler.execute_selection(identity, group_ids)


    async def get_campaign_status(self, target: TargetRef) -> ProcessedGroupsState | None:
        identity = await self.resolve_target(target)
        return self.checkpoints.get_tracking_summary(identity)

    async def clear_campaign(self, target: TargetRef) -> bool:
        identity = await self.resolve_target(target)
        cleared = self.checkpoints.clear_tracking(identity)
        if cleared:
            logger.info(f"Cleared campaign tracking for {identity.checkpoint_key}")
        return cleared
