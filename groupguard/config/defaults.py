"""Centralized opinionated defaults for generated/migrated config files."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

# Pacing values stay well under the platform's unpublished per-account
# rate-limit thresholds. Lowering them risks the operator's account.
DEFAULT_PACING: dict[str, Any] = {
    "metadata_delay_ms": 3000,
    "removal_delay_ms": 2000,
    "extended_pause_every": 3,
    "extended_pause_ms": 20000,
    "rate_limit_backoff_ms": 15000,
    "listing_delay_ms": 500,
}

DEFAULT_PROPAGATION: dict[str, Any] = {
    "default_cap": 10,
    "confirm_threshold": 10,
    "selection_ttl_seconds": 300,
    "lease_ttl_seconds": 3600,
    "pacing": DEFAULT_PACING,
}

DEFAULT_KICK: dict[str, Any] = {
    "max_attempts": 3,
    "attempt_timeout_ms": 10000,
    "final_attempt_timeout_ms": 20000,
    "retry_delay_ms": 2000,
}

DEFAULT_STORAGE: dict[str, Any] = {
    "checkpoint_db_path": "data/checkpoints.db",
    "audit_path": "data/removal_audit.jsonl",
}


def default_sections() -> dict[str, dict[str, Any]]:
    return {
        "propagation": deepcopy(DEFAULT_PROPAGATION),
        "kick": deepcopy(DEFAULT_KICK),
        "storage": deepcopy(DEFAULT_STORAGE),
    }


def _fill_missing(target: dict[str, Any], defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        if key not in target:
            target[key] = deepcopy(value)
        elif isinstance(value, dict) and isinstance(target[key], dict):
            _fill_missing(target[key], value)


def apply_missing_defaults(snake: dict[str, Any]) -> dict[str, Any]:
    """Fill absent snake_case config sections without touching explicit values."""
    for name, defaults in default_sections().items():
        section = snake.get(name)
        if not isinstance(section, dict):
            section = {}
            snake[name] = section
        _fill_missing(section, defaults)
    return snake
