import json
from pathlib import Path

import pytest

from groupguard.app.bootstrap import build_moderation_runtime
from groupguard.config.schema import Config, PacingConfig
from groupguard.core.models import ParticipantRecord
from groupguard.identity.resolver import reverse_mapping_path
from groupguard.storage.audit import RemovalAuditStore

MEMBER = ParticipantRecord(id="X@lid", phone_number="972527332312@s.whatsapp.net")


@pytest.fixture
def runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, directory, kicker):
    monkeypatch.setenv("GROUPGUARD_HOME", str(tmp_path))
    cfg = Config()
    cfg.propagation.pacing = PacingConfig(**{name: 0 for name in PacingConfig.model_fields})
    cfg.bridge.auth_dir = str(tmp_path / "auth")
    rt = build_moderation_runtime(config=cfg, directory=directory, kicker=kicker)
    yield rt
    rt.close()


async def test_campaign_roundtrip_through_service(runtime, directory, kicker) -> None:
    ids = directory.add_many(3, MEMBER)
    service = runtime.service

    report = await service.run_propagation("+972 52-733-2312", cap=2)
    assert report.successful_removals == 2
    assert report.limit_reached is True

    status = await service.get_campaign_status("972527332312")
    assert status is not None
    assert status.total_processed == 2
    assert status.processed_group_ids == frozenset(ids[:2])

    assert await service.clear_campaign("972527332312@c.us")
    cleared = await service.get_campaign_status("972527332312")
    assert cleared is not None and cleared.is_tracked is False


async def test_default_cap_comes_from_config(runtime, directory) -> None:
    directory.add_many(12, ParticipantRecord(id="1@s.whatsapp.net"))
    report = await runtime.service.run_propagation("972527332312")
    assert report.groups_processed_this_run == 10


async def test_lid_target_resolved_from_auth_dir(tmp_path: Path, runtime, directory, kicker) -> None:
    auth = tmp_path / "auth"
    auth.mkdir()
    reverse_mapping_path(auth, "77709346664559").write_text("972527332312")
    directory.add("south@g.us", "South", MEMBER)

    entries = await runtime.service.list_candidate_groups("77709346664559@lid")
    assert [e.group_id for e in entries] == ["south@g.us"]

    report = await runtime.service.execute_selection("77709346664559@lid", ["south@g.us"])
    assert report.successful_removals == 1
    assert kicker.removed == [("south@g.us", "X@lid")]


async def test_unusable_target_returns_fatal_report(runtime, kicker) -> None:
    report = await runtime.service.run_propagation("  ")
    assert report.is_fatal
    assert report.mode == "campaign"
    assert "Could not normalize" in report.error

    selection = await runtime.service.execute_selection("", ["south@g.us"])
    assert selection.is_fatal
    assert selection.mode == "selection"
    assert kicker.removed == []



def test_audit_read_recent(tmp_path: Path) -> None:
    store = RemovalAuditStore(tmp_path / "audit" / "removal_audit.jsonl")
    assert store.read_recent(5) == []
    for i in range(3):
        store.record(target_key="t", group_id=f"g{i}", group_name=f"G{i}", status="success", reason="ok")
    with open(store.path, "a", encoding="utf-8") as f:
        f.write("not json\n")

    recent = store.read_recent(2)
    assert [e.group_id for e in recent] == ["g1", "g2"]
    assert json.loads(store.path.read_text().splitlines()[0])["target_key"] == "t"
