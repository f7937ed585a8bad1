"""Append-only audit log for removal attempts."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger


@dataclass(frozen=True, slots=True)
class RemovalAuditEntry:
    id: str
    timestamp: str
    target_key: str
    group_id: str
    group_name: str
    status: str
    reason: str
    match_strategy: int | None = None
    participant_id: str | None = None


class RemovalAuditStore:
    """Stores one JSONL row per removal attempt and per heuristic match."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def record(
        self,
        *,
        target_key: str,
        group_id: str,
        group_name: str,
        status: str,
        reason: str,
        match_strategy: int | None = None,
        participant_id: str | None = None,
    ) -> RemovalAuditEntry | None:
        entry = RemovalAuditEntry(
            id=uuid.uuid4().hex[:12],
            timestamp=datetime.now(UTC).isoformat(),
            target_key=target_key,
            group_id=group_id,
            group_name=group_name,
            status=status,
            reason=reason,
            match_strategy=match_strategy,
            participant_id=participant_id,
        )
        try:
            self.append(entry)
        except OSError as e:
            logger.warning(f"Failed to write removal audit row for {group_id}: {e}")
            return None
        return entry

    def append(self, entry: RemovalAuditEntry) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        row = {
            "id": entry.id,
            "timestamp": entry.timestamp,
            "target_key": entry.target_key,
            "group_id": entry.group_id,
            "group_name": entry.group_name,
            "status": entry.status,
            "reason": entry.reason,
            "match_strategy": entry.match_strategy,
            "participant_id": entry.participant_id,
        }
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=False, separators=(",", ":")) + "\n")

    def read_recent(self, limit: int) -> list[RemovalAuditEntry]:
        if limit <= 0 or not self._path.exists():
            return []
        rows: list[RemovalAuditEntry] = []
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(item, dict):
                    continue
                rows.append(
                    RemovalAuditEntry(
                        id=str(item.get("id") or ""),
                        timestamp=str(item.get("timestamp") or ""),
                        target_key=str(item.get("target_key") or ""),
                        group_id=str(item.get("group_id") or ""),
                        group_name=str(item.get("group_name") or ""),
                        status=str(item.get("status") or ""),
                        reason=str(item.get("reason") or ""),
                        match_strategy=item.get("match_strategy"),
                        participant_id=item.get("participant_id"),
                    )
                )
        return rows[-limit:]
