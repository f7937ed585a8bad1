"""Persistent storage helpers."""

from groupguard.storage.audit import RemovalAuditEntry, RemovalAuditStore
from groupguard.storage.checkpoints import CheckpointStore

__all__ = ["CheckpointStore", "RemovalAuditEntry", "RemovalAuditStore"]
