"""Decide whether a target identity is a member of a group.

The platform exposes each participant with up to two independent fields
(``id`` which may be anonymized, and an optional ``phone_number``), and no
single field is populated for every participant in every group. Strategies
are ranked and the strongest hit in the group wins; exact identifier equality
ranks above the digit heuristics to keep false positives down.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from loguru import logger

from groupguard.core.models import GroupRecord, ParticipantRecord, TargetIdentity
from groupguard.identity.jid import canonical_key, digits_only, is_lid, is_stable, jid_key, jid_user

PHONE_SUFFIX_DIGITS = 9


class MatchStrategy(IntEnum):
    EXACT_ID = 1
    EXACT_PHONE = 2
    STABLE_DIGITS = 3
    LID_USER = 4
    PHONE_SUFFIX = 5


@dataclass(frozen=True, slots=True)
class MatchResult:
    participant: ParticipantRecord
    strategy: MatchStrategy

    @property
    def is_heuristic(self) -> bool:
        return self.strategy is MatchStrategy.PHONE_SUFFIX


def _target_refs(target: TargetIdentity) -> set[str]:
    refs = {target.normalized_key}
    raw = target.raw_reference.strip()
    if raw:
        refs.add(raw)
        refs.add(raw.lower())
    refs.discard("")
    return refs


def _equal_refs(value: str | None, refs: set[str]) -> bool:
    if not value:
        return False
    return value in refs or jid_key(value) in refs


def _same_stable_account(value: str | None, key: str) -> bool:
    """``@c.us`` and ``@s.whatsapp.net`` ids for the same digits name one account."""
    if not value or not is_stable(key):
        return False
    candidate = canonical_key(value)
    return bool(candidate) and candidate == canonical_key(key)


def _match_one(
    target: TargetIdentity,
    refs: set[str],
    participant: ParticipantRecord,
) -> MatchStrategy | None:
    key = target.normalized_key

    if _equal_refs(participant.id, refs) or _same_stable_account(participant.id, key):
        return MatchStrategy.EXACT_ID

    if _equal_refs(participant.phone_number, refs):
        return MatchStrategy.EXACT_PHONE

    if is_stable(key) and participant.phone_number:
        target_digits = jid_user(key)
        if target_digits and target_digits == jid_user(participant.phone_number):
            return MatchStrategy.STABLE_DIGITS

    if is_lid(key) and is_lid(participant.id):
        target_lid = jid_user(key)
        if target_lid and target_lid == jid_user(participant.id):
            return MatchStrategy.LID_USER

    if target.resolved_phone and participant.phone_number:
        suffix = digits_only(target.resolved_phone)[-PHONE_SUFFIX_DIGITS:]
        if suffix and suffix in digits_only(jid_user(participant.phone_number)):
            return MatchStrategy.PHONE_SUFFIX

    return None


def match_participant(target: TargetIdentity, group: GroupRecord) -> MatchResult | None:
    """Return the participant matching ``target`` in ``group``, or None if absent.

    A stronger strategy on any participant beats a weaker one on an earlier
    participant; among equal strategies the first participant in group order wins.
    """
    refs = _target_refs(target)
    best: MatchResult | None = None
    for participant in group.participants:
        strategy = _match_one(target, refs, participant)
        if strategy is None:
            continue
        if best is None or strategy < best.strategy:
            best = MatchResult(participant=participant, strategy=strategy)
            if strategy is MatchStrategy.EXACT_ID:
                break

    if best is None:
        return None
    if best.is_heuristic:
        logger.warning(
            "Heuristic phone-suffix match target={} participant={} phone={} group={}",
            target.normalized_key,
            best.participant.id,
            best.participant.phone_number,
            group.group_id,
        )
    else:
        logger.debug(
            "Matched target={} participant={} strategy={} group={}",
            target.normalized_key,
            best.participant.id,
            best.strategy.name,
            group.group_id,
        )
    return best
