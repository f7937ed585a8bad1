"""Cross-group moderation: matching, propagation and interactive selection."""

from groupguard.moderation.matcher import MatchResult, MatchStrategy, match_participant
from groupguard.moderation.report import (
    format_campaign_status,
    format_propagation_report,
    format_selection_list,
)
from groupguard.moderation.scheduler import PacingPolicy, PropagationRun, PropagationScheduler
from groupguard.moderation.selection import (
    SelectionReply,
    SelectionSessionStore,
    SelectionState,
    SelectionWorkflow,
)
from groupguard.moderation.service import PropagationService

__all__ = [
    "MatchResult",
    "MatchStrategy",
    "PacingPolicy",
    "PropagationRun",
    "PropagationScheduler",
    "PropagationService",
    "SelectionReply",
    "SelectionSessionStore",
    "SelectionState",
    "SelectionWorkflow",
    "format_campaign_status",
    "format_propagation_report",
    "format_selection_list",
    "match_participant",
]
