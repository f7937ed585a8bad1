"""Operator-facing text for propagation results."""

from __future__ import annotations

from groupguard.core.models import (
    GroupOutcome,
    ProcessedGroupsState,
    PropagationReport,
    SelectionEntry,
)


def _group_line(outcome: GroupOutcome, *, with_reason: bool = True) -> list[str]:
    lines = [f"  - {outcome.group_name} ({outcome.group_id})"]
    if with_reason and outcome.reason:
        lines.append(f"    reason: {outcome.reason}")
    return lines


def format_propagation_report(report: PropagationReport) -> str:
    """Render a PropagationReport as plain text.

    Always mentions the safety cap when it truncated the run, the number of
    successful removals and every group where removal failed for lack of
    privilege. "Not a member" is reported as a count only.
    """
    if report.is_fatal:
        return f"Propagation failed for {report.target_key}\n\n{report.error}"

    if report.all_groups_processed:
        return (
            f"All {report.total_groups_available} groups were already processed for "
            f"{report.target_key}.\nClear the campaign to start over."
        )

    title = "Selected groups removal" if report.mode == "selection" else "Propagation report"
    lines = [f"{title}: {report.target_key}", ""]

    if report.limit_reached:
        lines.append(
            f"Safety cap active: processed {report.groups_processed_this_run} of "
            f"{report.total_groups_available} groups this run."
        )
        lines.append("")

    lines.append("Summary:")
    if report.mode == "selection":
        lines.append(f"  groups selected: {report.groups_selected}")
    else:
        lines.append(f"  groups available: {report.total_groups_available}")
    lines.append(f"  groups processed: {report.groups_processed_this_run}")
    lines.append(f"  target found in: {report.groups_where_target_found}")
    lines.append(f"  removed: {report.successful_removals}")
    if report.failed_removals:
        lines.append(f"  failed removals: {report.failed_removals}")
    lines.append(f"  not a member: {report.skipped_groups}")
    if report.error_groups:
        lines.append(f"  could not check: {report.error_groups}")

    if report.remaining_groups:
        lines.append("")
        lines.append(f"{report.remaining_groups} groups not checked yet.")
        if report.mode == "campaign":
            lines.append("Run propagation again to process the next batch.")
    if report.interrupted:
        lines.append("Run was stopped before all selected groups were processed.")

    successes = [d for d in report.details if d.status == "success"]
    if successes and report.mode == "selection":
        lines.append("")
        lines.append("Removed from:")
        for outcome in successes:
            lines.extend(_group_line(outcome, with_reason=False))

    privileged = report.privilege_failures()
    if privileged:
        lines.append("")
        lines.append(f"Missing admin rights in {len(privileged)} group(s):")
        for outcome in privileged:
            lines.extend(_group_line(outcome))

    other_failures = [
        d for d in report.details if d.status == "failed" and d.failure_kind != "permission_denied"
    ]
    if other_failures:
        lines.append("")
        lines.append("Other failed removals:")
        for outcome in other_failures:
            lines.extend(_group_line(outcome))

    errors = [d for d in report.details if d.status == "error"]
    if errors:
        lines.append("")
        lines.append("Could not check (will be retried next run):" if report.mode == "campaign" else "Could not check:")
        for outcome in errors:
            lines.extend(_group_line(outcome))

    return "\n".join(lines)


def format_selection_list(entries: list[SelectionEntry]) -> str:
    """Numbered menu shown to the operator."""
    if not entries:
        return "Target is not a member of any of your groups."
    lines = [f"Found in {len(entries)} groups:", ""]
    for entry in entries:
        lines.append(f"{entry.index}. {entry.group_name} ({entry.member_count} members)")
    lines.append("")
    lines.append('Reply with group numbers (e.g. "1,3,5") or "all".')
    return "\n".join(lines)


def format_campaign_status(state: ProcessedGroupsState | None) -> str:
    if state is None:
        return "Campaign status unavailable (checkpoint store error)."
    if not state.is_tracked:
        return f"No campaign recorded for {state.target_key}."
    updated = state.last_updated.isoformat(timespec="seconds") if state.last_updated else "unknown"
    return (
        f"Campaign for {state.target_key}: {state.total_processed} groups processed "
        f"(last updated {updated})"
    )
