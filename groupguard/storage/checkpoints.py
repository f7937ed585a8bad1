"""SQLite-backed checkpoint store for moderation campaigns."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from groupguard.core.models import ProcessedGroupsState, TargetIdentity
from groupguard.identity.jid import canonical_key
from groupguard.utils.helpers import ensure_dir, get_operational_data_path


def _target_key(target: TargetIdentity | str) -> str:
    if isinstance(target, TargetIdentity):
        return target.checkpoint_key
    return canonical_key(target)


class CheckpointStore:
    """Durable record of which groups a campaign has already processed.

    One row per target key. Writes are set unions so retried invocations are
    idempotent; ``total_processed`` is recomputed from the stored set on every
    write. The store also carries an advisory per-target lease so two
    invocations for the same target cannot interleave read-then-write cycles.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or get_operational_data_path() / "checkpoints.db"
        ensure_dir(self.db_path.parent)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_groups (
                    target_key TEXT PRIMARY KEY,
                    group_ids_json TEXT NOT NULL,
                    total_processed INTEGER NOT NULL DEFAULT 0,
                    last_updated TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS campaign_leases (
                    target_key TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Processed groups ─────────────────────────────────────────────

    def _read_group_ids(self, key: str) -> set[str] | None:
        row = self._conn.execute(
            "SELECT group_ids_json FROM processed_groups WHERE target_key = ? LIMIT 1",
            (key,),
        ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["group_ids_json"])
        except json.JSONDecodeError:
            logger.warning(f"Corrupt checkpoint row for {key}; treating as empty")
            return set()
        return {str(item) for item in data} if isinstance(data, list) else set()

    def get_processed_groups(self, target: TargetIdentity | str) -> set[str]:
        """Group IDs already processed for ``target`` (empty on any failure)."""
        key = _target_key(target)
        if not key:
            return set()
        try:
            with self._lock:
                return self._read_group_ids(key) or set()
        except sqlite3.Error as e:
            logger.warning(f"Failed to read processed groups for {key}: {e}")
            return set()

    def add_processed_groups(self, target: TargetIdentity | str, group_ids: list[str] | set[str]) -> bool:
        """Union ``group_ids`` into the stored set. Returns False on failure."""
        key = _target_key(target)
        if not key:
            return False
        incoming = {str(gid) for gid in group_ids if gid}
        now_iso = datetime.now(UTC).isoformat()
        try:
            with self._lock:
                existing = self._read_group_ids(key) or set()
                merged = sorted(existing | incoming)
                self._conn.execute(
                    """
                    INSERT INTO processed_groups (target_key, group_ids_json, total_processed, last_updated)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(target_key) DO UPDATE SET
                        group_ids_json = excluded.group_ids_json,
                        total_processed = excluded.total_processed,
                        last_updated = excluded.last_updated
                    """,
                    (key, json.dumps(merged), len(merged), now_iso),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to add processed groups for {key}: {e}")
            return False
        logger.debug("Tracked {} processed group(s) for {}", len(incoming), key)
        return True

    def clear_tracking(self, target: TargetIdentity | str) -> bool:
        """Delete the whole campaign record so a future campaign starts from zero."""
        key = _target_key(target)
        if not key:
            return False
        try:
            with self._lock:
                self._conn.execute("DELETE FROM processed_groups WHERE target_key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to clear tracking for {key}: {e}")
            return False
        logger.info(f"Cleared campaign tracking for {key}")
        return True

    def get_tracking_summary(self, target: TargetIdentity | str) -> ProcessedGroupsState | None:
        """Campaign summary, or None when the store cannot be read."""
        key = _target_key(target)
        if not key:
            return None
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT group_ids_json, total_processed, last_updated
                    FROM processed_groups WHERE target_key = ? LIMIT 1
                    """,
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Failed to read tracking summary for {key}: {e}")
            return None

        if row is None:
            return ProcessedGroupsState(target_key=key, is_tracked=False)
        try:
            group_ids = frozenset(str(item) for item in json.loads(row["group_ids_json"]))
        except (json.JSONDecodeError, TypeError):
            group_ids = frozenset()
        try:
            last_updated = datetime.fromisoformat(row["last_updated"])
        except (TypeError, ValueError):
            last_updated = None
        return ProcessedGroupsState(
            target_key=key,
            is_tracked=True,
            processed_group_ids=group_ids,
            total_processed=len(group_ids),
            last_updated=last_updated,
        )

    # ── Campaign leases ──────────────────────────────────────────────

    def acquire_lease(self, target: TargetIdentity | str, owner: str, ttl_seconds: float) -> bool:
        """Take the per-target lease unless another owner holds an unexpired one."""
        key = _target_key(target)
        if not key:
            return False
        now = time.time()
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT owner, expires_at FROM campaign_leases WHERE target_key = ? LIMIT 1",
                    (key,),
                ).fetchone()
                if row is not None and row["owner"] != owner and float(row["expires_at"]) > now:
                    return False
                self._conn.execute(
                    """
                    INSERT INTO campaign_leases (target_key, owner, expires_at) VALUES (?, ?, ?)
                    ON CONFLICT(target_key) DO UPDATE SET
                        owner = excluded.owner,
                        expires_at = excluded.expires_at
                    """,
                    (key, owner, now + max(1.0, float(ttl_seconds))),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to acquire campaign lease for {key}: {e}; proceeding without lease")
            return True
        return True

    def release_lease(self, target: TargetIdentity | str, owner: str) -> None:
        key = _target_key(target)
        if not key:
            return
        try:
            with self._lock:
                self._conn.execute(
                    "DELETE FROM campaign_leases WHERE target_key = ? AND owner = ?",
                    (key, owner),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to release campaign lease for {key}: {e}")
