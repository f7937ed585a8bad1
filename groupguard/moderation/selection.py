"""Interactive selection of the groups a target should be removed from.

Flow per operator: ``idle -> listing -> awaiting_selection -> [confirm] ->
executing -> completed``. Sessions live in a small TTL store keyed by the
operator; an expired session is dropped and the operator is back to idle
without any message.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

from groupguard.core.errors import GroupListingError
from groupguard.core.models import PropagationReport, SelectionEntry, TargetIdentity
from groupguard.moderation.report import format_propagation_report, format_selection_list
from groupguard.moderation.scheduler import PropagationScheduler

CONFIRM_WORDS = frozenset({"continue", "yes", "confirm", "y"})
CANCEL_WORDS = frozenset({"cancel", "no", "stop", "n"})
ALL_WORDS = frozenset({"all", "*"})

_SPLIT_RE = re.compile(r"[,\s]+")


class SelectionState(StrEnum):
    IDLE = "idle"
    LISTING = "listing"
    AWAITING_SELECTION = "awaiting_selection"
    CONFIRM = "confirm_if_over_threshold"
    EXECUTING = "executing"
    COMPLETED = "completed"


@dataclass(slots=True, kw_only=True)
class SelectionSession:
    """Transient per-operator selection state."""

    operator_id: str
    target: TargetIdentity
    state: SelectionState = SelectionState.LISTING
    entries: tuple[SelectionEntry, ...] = ()
    selected: tuple[SelectionEntry, ...] = ()
    expires_at: float = 0.0


@dataclass(frozen=True, slots=True, kw_only=True)
class SelectionReply:
    """What the workflow wants shown to the operator after one input."""

    state: SelectionState
    message: str
    entries: tuple[SelectionEntry, ...] = ()
    selected: tuple[SelectionEntry, ...] = ()
    report: PropagationReport | None = field(default=None)


class SelectionSessionStore:
    """Sessions keyed by operator with a bounded lifetime."""

    def __init__(self, *, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._clock = clock
        self._sessions: dict[str, SelectionSession] = {}
        self._next_cleanup_at = 0.0

    def get(self, operator_id: str) -> SelectionSession | None:
        now = self._clock()
        self._maybe_cleanup(now)
        session = self._sessions.get(operator_id)
        if session is None:
            return None
        if session.expires_at <= now:
            self._sessions.pop(operator_id, None)
            logger.debug(f"Selection session for {operator_id} expired")
            return None
        return session

    def put(self, session: SelectionSession) -> None:
        session.expires_at = self._clock() + float(self._ttl_seconds)
        self._sessions[session.operator_id] = session

    def discard(self, operator_id: str) -> None:
        self._sessions.pop(operator_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def _maybe_cleanup(self, now: float) -> None:
        if now < self._next_cleanup_at:
            return
        expired = [k for k, s in self._sessions.items() if s.expires_at <= now]
        for k in expired:
            self._sessions.pop(k, None)
        self._next_cleanup_at = now + 30.0


def parse_selection(text: str, entries: tuple[SelectionEntry, ...]) -> tuple[SelectionEntry, ...]:
    """Resolve ``"1,3,5"`` or ``"all"`` against a numbered entry list.

    Raises ValueError for non-numeric tokens, out-of-range indices or an empty
    reply. Duplicates are ignored and the result follows menu order.
    """
    reply = (text or "").strip().lower()
    if reply in ALL_WORDS:
        return tuple(entries)

    tokens = [t for t in _SPLIT_RE.split(reply) if t]
    if not tokens:
        raise ValueError("No group numbers given")

    by_index = {entry.index: entry for entry in entries}
    chosen: set[int] = set()
    for token in tokens:
        if not token.isdigit():
            raise ValueError(f"Not a group number: {token!r}")
        index = int(token)
        if index not in by_index:
            raise ValueError(f"No group number {index} (valid: 1-{len(entries)})")
        chosen.add(index)
    return tuple(by_index[i] for i in sorted(chosen))


class SelectionWorkflow:
    """Per-operator state machine over listing, selection, confirmation and execution."""

    def __init__(
        self,
        scheduler: PropagationScheduler,
        *,
        store: SelectionSessionStore | None = None,
        confirm_threshold: int = 10,
    ) -> None:
        self._scheduler = scheduler
        self._store = store if store is not None else SelectionSessionStore()
        self._confirm_threshold = max(1, int(confirm_threshold))

    def state_for(self, operator_id: str) -> SelectionState:
        session = self._store.get(operator_id)
        return session.state if session else SelectionState.IDLE

    async def start(self, operator_id: str, target: TargetIdentity) -> SelectionReply:
        """List the groups containing ``target`` and wait for the operator's pick."""
        session = SelectionSession(operator_id=operator_id, target=target)
        self._store.put(session)
        try:
            entries = tuple(await self._scheduler.list_candidates(target))
        except GroupListingError as e:
            self._store.discard(operator_id)
            logger.error(f"Listing groups for selection failed: {e}")
            return SelectionReply(state=SelectionState.IDLE, message=f"Error listing groups: {e}")

        if not entries:
            self._store.discard(operator_id)
            return SelectionReply(state=SelectionState.IDLE, message=format_selection_list([]))

        session.entries = entries
        session.state = SelectionState.AWAITING_SELECTION
        self._store.put(session)
        return SelectionReply(
            state=session.state,
            message=format_selection_list(list(entries)),
            entries=entries,
        )

    async def handle_reply(self, operator_id: str, text: str) -> SelectionReply | None:
        """Feed one operator reply; None when there is no live session."""
        session = self._store.get(operator_id)
        if session is None:
            return None

        if session.state is SelectionState.AWAITING_SELECTION:
            return await self._on_selection(session, text)
        if session.state is SelectionState.CONFIRM:
            return await self._on_confirmation(session, text)
        return SelectionReply(state=session.state, message="Selection is still being processed.")

    def cancel(self, operator_id: str) -> None:
        self._store.discard(operator_id)

    # ── Transitions ──────────────────────────────────────────────────

    async def _on_selection(self, session: SelectionSession, text: str) -> SelectionReply:
        try:
            selected = parse_selection(text, session.entries)
        except ValueError as e:
            self._store.put(session)
            return SelectionReply(
                state=session.state,
                message=f'{e}. Reply with group numbers (e.g. "1,3,5") or "all".',
                entries=session.entries,
            )

        session.selected = selected
        if len(selected) > self._confirm_threshold:
            session.state = SelectionState.CONFIRM
            self._store.put(session)
            return SelectionReply(
                state=session.state,
                message=(
                    f"You selected {len(selected)} groups. Removing from more than "
                    f'{self._confirm_threshold} groups at once is risky. Reply "continue" '
                    'to proceed or "cancel" to abort.'
                ),
                entries=session.entries,
                selected=selected,
            )
        return await self._execute(session)

    async def _on_confirmation(self, session: SelectionSession, text: str) -> SelectionReply:
        reply = (text or "").strip().lower()
        if reply in CONFIRM_WORDS:
            return await self._execute(session)
        if reply in CANCEL_WORDS:
            self._store.discard(session.operator_id)
            return SelectionReply(state=SelectionState.IDLE, message="Selection cancelled.")
        self._store.put(session)
        return SelectionReply(
            state=session.state,
            message='Reply "continue" to proceed or "cancel" to abort.',
            entries=session.entries,
            selected=session.selected,
        )

    async def _execute(self, session: SelectionSession) -> SelectionReply:
        session.state = SelectionState.EXECUTING
        self._store.put(session)
        selected = session.selected
        try:
            report = await self._scheduler.execute_selection(
                session.target,
                [entry.group_id for entry in selected],
                group_names={entry.group_id: entry.group_name for entry in selected},
            )
        finally:
            self._store.discard(session.operator_id)
        return SelectionReply(
            state=SelectionState.COMPLETED,
            message=format_propagation_report(report),
            selected=selected,
            report=report,
        )
