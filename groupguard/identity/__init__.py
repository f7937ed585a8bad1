"""Identity normalization and anonymized-id resolution."""

from groupguard.identity.jid import (
    canonical_key,
    digits_only,
    is_lid,
    is_stable,
    jid_key,
    jid_user,
)
from groupguard.identity.resolver import LidResolver

__all__ = ["LidResolver", "canonical_key", "digits_only", "is_lid", "is_stable", "jid_key", "jid_user"]
