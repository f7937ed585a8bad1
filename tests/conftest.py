from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from groupguard.core.models import GroupRecord, ParticipantRecord
from groupguard.moderation.scheduler import PacingPolicy, PropagationScheduler
from groupguard.storage.audit import RemovalAuditStore
from groupguard.storage.checkpoints import CheckpointStore


class FakeDirectory:
    """In-memory group directory; groups keep insertion order like the platform listing."""

    def __init__(self) -> None:
        self.groups: dict[str, GroupRecord] = {}
        self.listing_error: Exception | None = None
        self.metadata_errors: dict[str, Exception] = {}
        self.metadata_calls: list[str] = []

    def add(self, group_id: str, name: str, *participants: ParticipantRecord) -> GroupRecord:
        group = GroupRecord(group_id=group_id, name=name, participants=tuple(participants))
        self.groups[group_id] = group
        return group

    def add_many(self, count: int, *participants: ParticipantRecord) -> list[str]:
        ids = []
        for i in range(1, count + 1):
            gid = f"1203630{i:05d}@g.us"
            self.add(gid, f"Group {i}", *participants)
            ids.append(gid)
        return ids

    async def list_administered_groups(self) -> dict[str, GroupRecord]:
        if self.listing_error is not None:
            raise self.listing_error
        return dict(self.groups)

    async def fetch_group_metadata(self, group_id: str) -> GroupRecord:
        self.metadata_calls.append(group_id)
        if group_id in self.metadata_errors:
            raise self.metadata_errors[group_id]
        return self.groups[group_id]


class FakeKicker:
    def __init__(self) -> None:
        self.removed: list[tuple[str, str]] = []
        self.errors: dict[str, Exception] = {}

    async def remove_participant(self, group_id: str, participant_id: str) -> None:
        if group_id in self.errors:
            raise self.errors[group_id]
        self.removed.append((group_id, participant_id))


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def kicker() -> FakeKicker:
    return FakeKicker()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def checkpoints(tmp_path: Path) -> Iterator[CheckpointStore]:
    store = CheckpointStore(tmp_path / "checkpoints.db")
    yield store
    store.close()


@pytest.fixture
def audit(tmp_path: Path) -> RemovalAuditStore:
    return RemovalAuditStore(tmp_path / "removal_audit.jsonl")


@pytest.fixture
def scheduler(
    directory: FakeDirectory,
    kicker: FakeKicker,
    checkpoints: CheckpointStore,
    audit: RemovalAuditStore,
    sleeps: SleepRecorder,
) -> PropagationScheduler:
    return PropagationScheduler(
        directory=directory,
        kicker=kicker,
        checkpoints=checkpoints,
        audit=audit,
        pacing=PacingPolicy(),
        sleep=sleeps,
    )
