from datetime import UTC, datetime

from groupguard.core.models import GroupOutcome, ProcessedGroupsState, PropagationReport, SelectionEntry
from groupguard.moderation.report import (
    format_campaign_status,
    format_propagation_report,
    format_selection_list,
)


def _report(**kwargs) -> PropagationReport:
    return PropagationReport(target_key="972527332312@c.us", **kwargs)


def test_report_mentions_cap_and_remaining_groups() -> None:
    report = _report(total_groups_available=25, groups_selected=10, limit_reached=True, remaining_groups=15)
    for i in range(10):
        report.record(GroupOutcome(group_id=f"g{i}@g.us", group_name=f"G{i}", status="skipped", reason="Target not a member"))

    text = format_propagation_report(report)

    assert "Safety cap active: processed 10 of 25 groups" in text
    assert "15 groups not checked yet." in text
    assert "Run propagation again" in text
    assert "not a member: 10" in text
    assert "failed" not in text.lower()


def test_report_lists_privilege_failures_by_name_and_id() -> None:
    report = _report(total_groups_available=3, groups_selected=3)
    report.record(GroupOutcome(group_id="a@g.us", group_name="Alpha", status="success", reason="Removed successfully"))
    report.record(
        GroupOutcome(
            group_id="b@g.us",
            group_name="Beta",
            status="failed",
            reason="not admin",
            failure_kind="permission_denied",
        )
    )
    report.record(GroupOutcome(group_id="c@g.us", group_name="Gamma", status="skipped", reason="Target not a member"))

    text = format_propagation_report(report)

    assert "removed: 1" in text
    assert "Missing admin rights in 1 group(s):" in text
    assert "Beta (b@g.us)" in text
    assert "Gamma" not in text
    assert "Safety cap" not in text


def test_report_separates_other_failures_and_errors() -> None:
    report = _report(total_groups_available=2, groups_selected=2)
    report.record(
        GroupOutcome(group_id="a@g.us", group_name="Alpha", status="failed", reason="gone", failure_kind="not_found")
    )
    report.record(GroupOutcome(group_id="b@g.us", group_name="Beta", status="error", reason="Failed to fetch group data: x"))

    text = format_propagation_report(report)

    assert "Missing admin rights" not in text
    assert "Other failed removals:" in text
    assert "Could not check (will be retried next run):" in text


def test_fatal_report() -> None:
    text = format_propagation_report(_report(error="Failed to fetch group list: offline"))
    assert text.startswith("Propagation failed")
    assert "offline" in text


def test_all_processed_report() -> None:
    text = format_propagation_report(_report(total_groups_available=4, all_groups_processed=True))
    assert "All 4 groups were already processed" in text


def test_selection_report_lists_removed_groups() -> None:
    report = _report(mode="selection", total_groups_available=1, groups_selected=1)
    report.record(GroupOutcome(group_id="a@g.us", group_name="Alpha", status="success", reason="Removed successfully"))

    text = format_propagation_report(report)

    assert text.startswith("Selected groups removal")
    assert "groups selected: 1" in text
    assert "Removed from:" in text
    assert "Alpha (a@g.us)" in text


def test_selection_list() -> None:
    entries = [
        SelectionEntry(index=1, group_id="a@g.us", group_name="Alpha", member_count=12),
        SelectionEntry(index=2, group_id="b@g.us", group_name="Beta", member_count=3),
    ]
    text = format_selection_list(entries)
    assert "Found in 2 groups:" in text
    assert "1. Alpha (12 members)" in text
    assert "2. Beta (3 members)" in text
    assert format_selection_list([]) == "Target is not a member of any of your groups."


def test_campaign_status() -> None:
    assert "No campaign recorded" in format_campaign_status(ProcessedGroupsState(target_key="k", is_tracked=False))
    assert "unavailable" in format_campaign_status(None)
    state = ProcessedGroupsState(
        target_key="k",
        is_tracked=True,
        processed_group_ids=frozenset({"a", "b"}),
        total_processed=2,
        last_updated=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
    )
    assert format_campaign_status(state) == "Campaign for k: 2 groups processed (last updated 2026-01-02T03:04:05+00:00)"
