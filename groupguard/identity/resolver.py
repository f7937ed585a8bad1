"""Resolve anonymized (``@lid``) identifiers to phone-derived digits."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from groupguard.core.models import TargetIdentity
from groupguard.core.ports import IdentityMappingPort
from groupguard.identity.jid import digits_only, is_lid, jid_key, jid_user


def reverse_mapping_path(cache_dir: Path, lid_user: str) -> Path:
    """On-disk reverse mapping file written by the WhatsApp session layer."""
    return cache_dir / f"lid-mapping-{lid_user}_reverse.json"


def _sanitize_phone(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip().strip("'\"").strip()
    if "@" in text:
        text = jid_user(text)
    digits = digits_only(text)
    return digits or None


class LidResolver:
    """Live identity-mapping lookup with a reverse-cache file fallback."""

    def __init__(
        self,
        *,
        mapping: IdentityMappingPort | None = None,
        cache_dir: Path | None = None,
    ) -> None:
        self._mapping = mapping
        self._cache_dir = cache_dir

    async def resolve(self, jid: str) -> str | None:
        """Return phone digits for an ``@lid`` JID, or None when no mapping exists.

        A miss is not fatal: callers continue with the raw identifier and accept
        a higher chance of a false-negative membership match.
        """
        if not is_lid(jid):
            return None
        lid_user = jid_user(jid)
        if not lid_user:
            return None

        phone = await self._resolve_live(lid_user)
        if phone:
            logger.info("Decoded LID {} -> {}", lid_user, phone)
            return phone

        phone = self._resolve_cached(lid_user)
        if phone:
            logger.info("Decoded LID {} -> {} (from reverse cache)", lid_user, phone)
            return phone

        logger.warning("Could not decode LID {} (no mapping found)", lid_user)
        return None

    async def resolve_target(self, raw_reference: str) -> TargetIdentity:
        """Normalize and resolve an operator-supplied reference."""
        normalized = jid_key(raw_reference)
        if not normalized:
            raise ValueError(f"Could not normalize user reference {raw_reference!r}")
        resolved = await self.resolve(normalized) if is_lid(normalized) else None
        return TargetIdentity(
            raw_reference=raw_reference.strip(),
            normalized_key=normalized,
            resolved_phone=resolved,
        )

    async def _resolve_live(self, lid_user: str) -> str | None:
        if self._mapping is None:
            return None
        try:
            value = await self._mapping.resolve_lid(lid_user)
        except Exception as e:
            logger.warning("Live LID lookup failed for {}: {} {}", lid_user, e.__class__.__name__, e)
            return None
        return _sanitize_phone(value)

    def _resolve_cached(self, lid_user: str) -> str | None:
        if self._cache_dir is None:
            return None
        path = reverse_mapping_path(self._cache_dir, lid_user)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read LID reverse cache {path}: {e}")
            return None
        return _sanitize_phone(raw)
