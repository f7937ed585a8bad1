"""Runtime wiring: config + bridge client -> PropagationService."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from groupguard.channels.whatsapp_bridge import (
    BridgeGroupDirectory,
    BridgeIdentityMapping,
    BridgeKickExecutor,
    WhatsAppBridgeClient,
)
from groupguard.identity.resolver import LidResolver
from groupguard.moderation.scheduler import PacingPolicy, PropagationScheduler
from groupguard.moderation.selection import SelectionSessionStore, SelectionWorkflow
from groupguard.moderation.service import PropagationService
from groupguard.storage.audit import RemovalAuditStore
from groupguard.storage.checkpoints import CheckpointStore

if TYPE_CHECKING:
    from groupguard.config.schema import Config
    from groupguard.core.ports import GroupDirectoryPort, IdentityMappingPort, KickExecutorPort


@dataclass(slots=True)
class ModerationRuntime:
    service: PropagationService
    checkpoints: CheckpointStore
    audit: RemovalAuditStore

    def close(self) -> None:
        self.checkpoints.close()


def build_moderation_runtime(
    *,
    config: "Config",
    directory: "GroupDirectoryPort",
    kicker: "KickExecutorPort",
    mapping: "IdentityMappingPort | None" = None,
) -> ModerationRuntime:
    """Compose the propagation service around the given platform ports."""
    checkpoints = CheckpointStore(config.storage.checkpoint_db_file)
    audit = RemovalAuditStore(config.storage.audit_file)
    scheduler = PropagationScheduler(
        directory=directory,
        kicker=kicker,
        checkpoints=checkpoints,
        audit=audit,
        pacing=PacingPolicy.from_config(config.propagation.pacing),
        lease_ttl_seconds=float(config.propagation.lease_ttl_seconds),
    )
    workflow = SelectionWorkflow(
        scheduler,
        store=SelectionSessionStore(ttl_seconds=config.propagation.selection_ttl_seconds),
        confirm_threshold=config.propagation.confirm_threshold,
    )
    service = PropagationService(
        resolver=LidResolver(mapping=mapping, cache_dir=config.bridge.auth_path),
        scheduler=scheduler,
        checkpoints=checkpoints,
        workflow=workflow,
        default_cap=config.propagation.default_cap,
    )
    return ModerationRuntime(service=service, checkpoints=checkpoints, audit=audit)


@contextlib.asynccontextmanager
async def bridge_runtime(config: "Config") -> AsyncIterator[ModerationRuntime]:
    """Connect to the WhatsApp bridge and yield a wired runtime."""
    async with WhatsAppBridgeClient(config.bridge) as client:
        runtime = build_moderation_runtime(
            config=config,
            directory=BridgeGroupDirectory(client),
            kicker=BridgeKickExecutor.from_config(client, config.kick),
            mapping=BridgeIdentityMapping(client),
        )
        try:
            yield runtime
        finally:
            runtime.close()
