"""Settlement math, ticket lifecycle, reprints and claims."""

from .claims import ClaimWorkflow, open_claim, record_decision
from .engine import SettlementEngine, SettlementReport, TicketFailure
from .explain import TicketExplanation, explain_ticket
from .lifecycle import (
    DRAW_TRANSITIONS,
    TICKET_TRANSITIONS,
    can_transition,
    transition_draw,
    transition_ticket,
)
from .matcher import (
    DEFAULT_MATCH_RULES,
    DEFAULT_PRIZE_RULES,
    BetEvaluation,
    MatchRule,
    MatchRuleRegistry,
    PrizeRuleSnapshot,
    TicketEvaluation,
    evaluate_bet,
    evaluate_bets,
)
from .reprint import (
    REPRINT_LIMIT,
    ReprintDecision,
    ReprintDenial,
    apply_reprint,
    can_reprint,
    reprint_ticket,
)

__all__ = [
    "BetEvaluation",
    "ClaimWorkflow",
    "DEFAULT_MATCH_RULES",
    "DEFAULT_PRIZE_RULES",
    "DRAW_TRANSITIONS",
    "MatchRule",
    "MatchRuleRegistry",
    "PrizeRuleSnapshot",
    "REPRINT_LIMIT",
    "ReprintDecision",
    "ReprintDenial",
    "SettlementEngine",
    "SettlementReport",
    "TICKET_TRANSITIONS",
    "TicketEvaluation",
    "TicketExplanation",
    "TicketFailure",
    "apply_reprint",
    "can_reprint",
    "can_transition",
    "evaluate_bet",
    "evaluate_bets",
    "explain_ticket",
    "open_claim",
    "record_decision",
    "reprint_ticket",
    "transition_draw",
    "transition_ticket",
]
