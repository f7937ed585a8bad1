"""Moderation commands: resolve, propagate, select and campaign bookkeeping."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from groupguard.cli.core import app, console
from groupguard.core.models import GroupOutcome, PropagationReport

_STATUS_STYLE = {
    "success": "[green]removed[/green]",
    "failed": "[red]failed[/red]",
    "skipped": "[dim]not a member[/dim]",
    "error": "[yellow]error[/yellow]",
}


def _load_config():
    from groupguard.config.loader import load_config

    config = load_config()
    if not config.bridge.token:
        console.print("[red]bridge.token is not configured.[/red] Run [cyan]groupguard onboard[/cyan] first.")
        raise typer.Exit(1)
    return config


def _run(coro):
    try:
        return asyncio.run(coro)
    except (OSError, TimeoutError) as e:
        console.print(f"[red]Could not reach the WhatsApp bridge:[/red] {e}")
        console.print("[dim]Tip: ensure the bridge is running and the token matches.[/dim]")
        raise typer.Exit(1)


def _print_outcome(outcome: GroupOutcome) -> None:
    label = _STATUS_STYLE.get(outcome.status, outcome.status)
    line = f"  {label} {outcome.group_name}"
    if outcome.status in ("failed", "error"):
        line += f" [dim]({outcome.reason})[/dim]"
    console.print(line)


def _print_report(report: PropagationReport) -> None:
    from groupguard.moderation.report import format_propagation_report

    console.print()
    console.print(format_propagation_report(report), markup=False, highlight=False)
    if report.is_fatal:
        raise typer.Exit(1)


@app.command()
def resolve(target: str = typer.Argument(..., help="Phone number or WhatsApp JID")) -> None:
    """Show how a target reference is normalized and resolved."""
    from groupguard.app.bootstrap import bridge_runtime

    config = _load_config()

    async def _resolve():
        async with bridge_runtime(config) as runtime:
            return await runtime.service.resolve_target(target)

    try:
        identity = _run(_resolve())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"Normalized: [cyan]{identity.normalized_key}[/cyan]")
    console.print(f"Resolved phone: {identity.resolved_phone or '[dim]none[/dim]'}")


@app.command()
def propagate(
    target: str = typer.Argument(..., help="Phone number or WhatsApp JID"),
    cap: int = typer.Option(0, "--cap", "-c", help="Max groups this run (default from config)"),
) -> None:
    """Remove the target from the next batch of unprocessed groups."""
    from groupguard.app.bootstrap import bridge_runtime

    config = _load_config()

    async def _propagate() -> PropagationReport:
        async with bridge_runtime(config) as runtime:
            run = await runtime.service.prepare_propagation(target, cap or None)
            if not run.done:
                console.print(
                    f"Processing {run.report.groups_selected} of "
                    f"{run.report.total_groups_available} groups..."
                )
            try:
                while not run.done:
                    outcome = await run.step()
                    if outcome is not None:
                        _print_outcome(outcome)
            finally:
                report = run.finish()
            return report

    try:
        _print_report(_run(_propagate()))
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def candidates(target: str = typer.Argument(..., help="Phone number or WhatsApp JID")) -> None:
    """List groups that contain the target."""
    from groupguard.app.bootstrap import bridge_runtime
    from groupguard.core.errors import GroupListingError

    config = _load_config()

    async def _list():
        async with bridge_runtime(config) as runtime:
            return await runtime.service.list_candidate_groups(target)

    try:
        entries = _run(_list())
    except (GroupListingError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not entries:
        console.print("Target is not a member of any of your groups.")
        return

    table = Table(title=f"Groups containing {target}")
    table.add_column("#", style="cyan")
    table.add_column("Group")
    table.add_column("Members", justify="right")
    table.add_column("ID", style="dim")
    for entry in entries:
        table.add_row(str(entry.index), entry.group_name, str(entry.member_count), entry.group_id)
    console.print(table)


@app.command()
def select(target: str = typer.Argument(..., help="Phone number or WhatsApp JID")) -> None:
    """Pick which groups to remove the target from."""
    from groupguard.app.bootstrap import bridge_runtime
    from groupguard.moderation.selection import SelectionState

    config = _load_config()
    operator_id = "cli"

    async def _select() -> PropagationReport | None:
        async with bridge_runtime(config) as runtime:
            service = runtime.service
            identity = await service.resolve_target(target)
            reply = await service.workflow.start(operator_id, identity)
            console.print(reply.message, markup=False, highlight=False)
            while reply.state not in (SelectionState.IDLE, SelectionState.COMPLETED):
                text = await asyncio.to_thread(typer.prompt, ">")
                next_reply = await service.workflow.handle_reply(operator_id, text)
                if next_reply is None:
                    console.print("[dim]Selection timed out.[/dim]")
                    return None
                reply = next_reply
                if reply.state is not SelectionState.COMPLETED:
                    console.print(reply.message, markup=False, highlight=False)
            return reply.report

    try:
        report = _run(_select())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if report is not None:
        _print_report(report)


@app.command()
def find(target: str = typer.Argument(..., help="Phone number or WhatsApp JID")) -> None:
    """Show which groups contain the target and how each match was made (read-only)."""
    from groupguard.app.bootstrap import bridge_runtime
    from groupguard.core.errors import GroupListingError

    config = _load_config()

    async def _find():
        async with bridge_runtime(config) as runtime:
            identity = await runtime.service.resolve_target(target)
            return identity, await runtime.service.scheduler.scan_membership(identity)

    try:
        identity, found = _run(_find())
    except (GroupListingError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"Target: [cyan]{identity.normalized_key}[/cyan]")
    if identity.resolved_phone:
        console.print(f"Resolved phone: {identity.resolved_phone}")
    if not found:
        console.print("Not found in any group.")
        return

    table = Table(title=f"Found in {len(found)} group(s)")
    table.add_column("Group")
    table.add_column("Participant", style="cyan")
    table.add_column("Phone")
    table.add_column("Role")
    table.add_column("Strategy")
    for group, match in found:
        strategy = match.strategy.name.lower()
        if match.is_heuristic:
            strategy = f"[yellow]{strategy}[/yellow]"
        table.add_row(
            group.name or group.group_id,
            match.participant.id,
            match.participant.phone_number or "",
            match.participant.admin_role,
            strategy,
        )
    console.print(table)


@app.command()
def status(target: str = typer.Argument(..., help="Phone number or WhatsApp JID")) -> None:
    """Show campaign checkpoint status for a target."""
    from groupguard.config.loader import load_config
    from groupguard.identity.resolver import LidResolver
    from groupguard.moderation.report import format_campaign_status
    from groupguard.storage.checkpoints import CheckpointStore

    config = load_config()
    store = CheckpointStore(config.storage.checkpoint_db_file)
    try:
        identity = asyncio.run(LidResolver(cache_dir=config.bridge.auth_path).resolve_target(target))
        console.print(format_campaign_status(store.get_tracking_summary(identity)))
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def clear(
    target: str = typer.Argument(..., help="Phone number or WhatsApp JID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Forget processed groups so the next campaign starts from zero."""
    from groupguard.config.loader import load_config
    from groupguard.identity.jid import canonical_key
    from groupguard.storage.checkpoints import CheckpointStore

    key = canonical_key(target)
    if not key:
        console.print(f"[red]Could not normalize user reference {target!r}[/red]")
        raise typer.Exit(1)
    if not yes and not typer.confirm(f"Clear campaign tracking for {key}?"):
        raise typer.Exit()

    config = load_config()
    store = CheckpointStore(config.storage.checkpoint_db_file)
    try:
        if store.clear_tracking(key):
            console.print(f"[green]✓[/green] Cleared campaign tracking for {key}")
        else:
            console.print("[red]Failed to clear campaign tracking[/red]")
            raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def audit(limit: int = typer.Option(20, "--limit", "-n", help="Rows to show")) -> None:
    """Show recent removal attempts and heuristic matches."""
    from groupguard.config.loader import load_config
    from groupguard.storage.audit import RemovalAuditStore

    config = load_config()
    entries = RemovalAuditStore(config.storage.audit_file).read_recent(limit)
    if not entries:
        console.print("No audit entries.")
        return

    table = Table(title="Removal audit")
    table.add_column("Time", style="dim")
    table.add_column("Target", style="cyan")
    table.add_column("Group")
    table.add_column("Status")
    table.add_column("Strategy", justify="right")
    table.add_column("Reason")
    for entry in entries:
        table.add_row(
            entry.timestamp,
            entry.target_key,
            entry.group_name or entry.group_id,
            entry.status,
            str(entry.match_strategy or ""),
            entry.reason,
        )
    console.print(table)
