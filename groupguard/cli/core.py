"""Shared CLI application context and setup helpers."""

from __future__ import annotations

import typer
from rich.console import Console

from groupguard import __logo__, __version__

app = typer.Typer(
    name="groupguard",
    help=f"{__logo__} groupguard - remove a member from every group you administer",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} groupguard v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """groupguard - cross-group member removal for WhatsApp admins."""


@app.command()
def onboard() -> None:
    """Initialize groupguard configuration."""
    from groupguard.config.loader import get_config_path, save_config
    from groupguard.config.schema import Config
    from groupguard.utils.helpers import get_operational_data_path

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    data_dir = get_operational_data_path()
    console.print(f"[green]✓[/green] Data directory at {data_dir}")

    console.print(f"\n{__logo__} groupguard is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Set [cyan]bridge.token[/cyan] in [cyan]{config_path}[/cyan]")
    console.print("  2. Start the WhatsApp bridge and link your account")
    console.print('  3. Try: [cyan]groupguard find "972500000000"[/cyan]')
