"""Utility functions for groupguard."""

import os
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the groupguard data directory.

    Respects GROUPGUARD_HOME environment variable; falls back to ~/.groupguard.
    """
    home = os.environ.get("GROUPGUARD_HOME", "").strip()
    if home:
        return ensure_dir(Path(home))
    return ensure_dir(Path.home() / ".groupguard")


def get_env_file_path() -> Path:
    """Get the .env file loaded at startup (<data root>/.env)."""
    return get_data_path() / ".env"


def get_operational_data_path() -> Path:
    """Get the long-lived operational data directory (~/.groupguard/data)."""
    return ensure_dir(get_data_path() / "data")


def resolve_data_file(value: str) -> Path:
    """Expand a configured path; relative paths live under the data root."""
    candidate = Path(value).expanduser()
    return candidate if candidate.is_absolute() else get_data_path() / candidate
