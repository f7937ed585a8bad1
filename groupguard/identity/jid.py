"""Canonical keys for WhatsApp user references.

The platform addresses one person in several shapes: a phone-derived JID
(``972500000000@s.whatsapp.net`` or the legacy ``@c.us``), an anonymized
session JID (``77709346664559@lid``), a JID carrying a device suffix
(``972500000000:16@s.whatsapp.net``), or a bare phone number typed by an
operator (``+972 50-000-0000``). :func:`jid_key` folds all of these into one
lowercase key so they can be compared and used as storage keys.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from typing import Any

STABLE_SERVER = "s.whatsapp.net"
LEGACY_SERVER = "c.us"
LID_SERVER = "lid"
STABLE_SERVERS = frozenset({STABLE_SERVER, LEGACY_SERVER})

_NON_DIGITS = re.compile(r"\D+")


def _clean(value: str) -> str:
    """Drop bidi/format marks (RTL copy-paste) and outer whitespace."""
    normalized = unicodedata.normalize("NFKC", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Cf").strip()


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def _field(ref: Any, name: str) -> Any:
    if isinstance(ref, Mapping):
        return ref.get(name)
    return getattr(ref, name, None)


def _key_from_string(value: str) -> str:
    s = _clean(value)
    if not s:
        return ""

    if "@" in s:
        user, server = s.split("@", 1)
        user = user.split(":", 1)[0].strip()
        server = server.split(":", 1)[0].strip()
        if not user or not server:
            return ""
        return f"{user}@{server}".lower()

    s = s.split(":", 1)[0].strip()
    digits = digits_only(s)
    if digits:
        return f"{digits}@{LEGACY_SERVER}"
    if s:
        # No digits at all: treat as an opaque username.
        return f"{s}@{LEGACY_SERVER}".lower()
    return ""


def _key_from_object(ref: Any) -> str:
    embedded = _field(ref, "id")
    if embedded is not None and not isinstance(embedded, str):
        serialized = _field(embedded, "_serialized")
        if isinstance(serialized, str) and serialized.strip():
            return _key_from_string(serialized)

    serialized = _field(ref, "_serialized")
    if isinstance(serialized, str) and serialized.strip():
        return _key_from_string(serialized)

    if isinstance(embedded, str) and embedded.strip():
        return _key_from_string(embedded)

    user = _field(ref, "user")
    server = _field(ref, "server")
    if user and server:
        return _key_from_string(f"{user}@{server}")
    return ""


def jid_key(ref: Any) -> str:
    """Normalize any user reference to a canonical lowercase JID key.

    Returns ``""`` when nothing usable is present; callers must treat that as
    "could not normalize", never as a valid key.
    """
    if ref is None:
        return ""
    if isinstance(ref, str):
        return _key_from_string(ref)
    if isinstance(ref, (int, float)):
        return _key_from_string(str(int(ref)))
    return _key_from_object(ref)


def jid_user(jid: str | None) -> str:
    """User portion of a JID without device suffix (``123:4@lid`` -> ``123``)."""
    if not jid:
        return ""
    user = jid.split("@", 1)[0]
    return user.split(":", 1)[0].strip().lower()


def jid_server(jid: str | None) -> str:
    if not jid or "@" not in jid:
        return ""
    return jid.split("@", 1)[1].split(":", 1)[0].strip().lower()


def is_lid(jid: str | None) -> bool:
    """Whether ``jid`` uses the anonymized session domain."""
    return jid_server(jid) == LID_SERVER


def is_stable(jid: str | None) -> bool:
    """Whether ``jid`` uses a phone-derived domain."""
    return jid_server(jid) in STABLE_SERVERS


def canonical_key(ref: Any) -> str:
    """Like :func:`jid_key`, but folds the legacy phone domain into the stable one.

    ``972500000000``, ``972500000000@c.us`` and ``972500000000@s.whatsapp.net``
    all name the same account and share one key here.
    """
    key = jid_key(ref)
    if is_stable(key):
        user = jid_user(key)
        return f"{user}@{STABLE_SERVER}" if user else ""
    return key
