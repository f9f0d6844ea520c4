"""Read-only trace of how a ticket was (or would be) settled."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..db.utils import dt_iso
from ..errors import NotFoundError
from ..models import ClaimRecord, PrizeRule, Ticket
from .matcher import ZERO, PrizeRuleSnapshot, evaluate_bet, normalize_combination
from .reprint import REPRINT_LIMIT


@dataclass(frozen=True)
class BetTrace:
    position: int
    combination: str
    sorted_digits: str
    bet_type: str
    amount: Decimal
    is_double: bool
    multiplier: Decimal
    is_winner: Optional[bool]
    prize: Decimal


@dataclass(frozen=True)
class ClaimTrace:
    claim_id: int
    status: str
    submitted_at: Optional[datetime]
    decided_at: Optional[datetime]
    prize_amount: Optional[Decimal] = None
    computed_prize: Optional[Decimal] = None
    override_prize: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass
class TicketExplanation:
    """Everything needed to audit one ticket's outcome.

    ``is_winner`` on each bet is ``None`` while the draw has no winning
    number.
    """

    ticket_id: int
    ticket_number: str
    status: str
    draw_id: int
    draw_label: str
    winning_number: Optional[str]
    rules: PrizeRuleSnapshot
    bets: list[BetTrace] = field(default_factory=list)
    computed_prize: Decimal = ZERO
    cached_prize: Optional[Decimal] = None
    approved_prize: Optional[Decimal] = None
    reprint_count: int = 0
    claims: list[ClaimTrace] = field(default_factory=list)

    @property
    def prize_matches_cache(self) -> bool:
        """``True`` when the cached settlement prize equals the recomputation
        (or nothing has been cached yet)."""
        return self.cached_prize is None or self.cached_prize == self.computed_prize

    @property
    def reprints_remaining(self) -> int:
        return max(REPRINT_LIMIT - self.reprint_count, 0)

    def to_json(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "status": self.status,
            "draw_id": self.draw_id,
            "draw": self.draw_label,
            "winning_number": self.winning_number,
            "rule_id": self.rules.rule_id,
            "multipliers": {
                "standard": str(self.rules.standard),
                "rambolito": str(self.rules.rambolito),
                "rambolito_double": str(self.rules.rambolito_double),
            },
            "bets": [
                {
                    "position": bet.position,
                    "combination": bet.combination,
                    "sorted_digits": bet.sorted_digits,
                    "bet_type": bet.bet_type,
                    "amount": str(bet.amount),
                    "is_double": bet.is_double,
                    "multiplier": str(bet.multiplier),
                    "is_winner": bet.is_winner,
                    "prize": str(bet.prize),
                }
                for bet in self.bets
            ],
            "computed_prize": str(self.computed_prize),
            "cached_prize": None if self.cached_prize is None else str(self.cached_prize),
            "prize_matches_cache": self.prize_matches_cache,
            "approved_prize": (
                None if self.approved_prize is None else str(self.approved_prize)
            ),
            "reprint_count": self.reprint_count,
            "reprints_remaining": self.reprints_remaining,
            "claims": [
                {
                    "claim_id": c.claim_id,
                    "status": c.status,
                    "submitted_at": dt_iso(c.submitted_at),
                    "decided_at": dt_iso(c.decided_at),
                    "prize_amount": None if c.prize_amount is None else str(c.prize_amount),
                    "computed_prize": (
                        None if c.computed_prize is None else str(c.computed_prize)
                    ),
                    "override_prize": (
                        None if c.override_prize is None else str(c.override_prize)
                    ),
                    "notes": c.notes,
                }
                for c in self.claims
            ],
        }

    def format(self) -> str:
        """Render a plain-text report."""
        lines = [
            f"Ticket {self.ticket_number} (id={self.ticket_id}) status={self.status}",
            f"Draw {self.draw_label} (id={self.draw_id}) "
            f"winning number={self.winning_number or '-'}",
            f"Prize rule: {self.rules.rule_id or 'defaults'} "
            f"(standard x{self.rules.standard}, rambolito x{self.rules.rambolito}, "
            f"double x{self.rules.rambolito_double})",
        ]
        for bet in self.bets:
            outcome = "-" if bet.is_winner is None else ("WIN" if bet.is_winner else "lose")
            lines.append(
                f"  #{bet.position} {bet.combination} [{bet.sorted_digits}] "
                f"{bet.bet_type}{' (double)' if bet.is_double else ''} "
                f"amount={bet.amount} x{bet.multiplier} {outcome} prize={bet.prize}"
            )
        lines.append(
            f"Computed prize {self.computed_prize}; cached {self.cached_prize}"
            f"{'' if self.prize_matches_cache else ' (MISMATCH)'}"
        )
        lines.append(f"Reprints {self.reprint_count}/{REPRINT_LIMIT}")
        for c in self.claims:
            lines.append(
                f"  claim {c.claim_id}: {c.status} payable={c.prize_amount} "
                f"computed={c.computed_prize} override={c.override_prize}"
            )
        return "\n".join(lines)


def explain_ticket(session: Session, ticket_id: int) -> TicketExplanation:
    """Recompute ``ticket_id``'s outcome without writing anything.

    Settled tickets are traced with the prize rule recorded at settlement;
    unsettled ones with the rule currently in force for their draw.
    """

    ticket = session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    draw = ticket.draw

    if ticket.settled_at is not None:
        rules = PrizeRuleSnapshot.from_model(ticket.prize_rule)
    else:
        rules = PrizeRuleSnapshot.from_model(PrizeRule.effective_at(session, draw.scheduled_at))

    traces = []
    computed = ZERO
    for bet in ticket.bets:
        combination = normalize_combination(bet.combination)
        if draw.winning_number is not None:
            evaluation = evaluate_bet(
                combination, bet.bet_type, bet.amount, draw.winning_number, rules
            )
            is_winner: Optional[bool] = evaluation.is_winner
            multiplier = evaluation.multiplier
            prize = evaluation.prize
            is_double = evaluation.is_double
        else:
            # Multiplier is computed against the bet itself so the trace still
            # shows what it would pay.
            evaluation = evaluate_bet(combination, bet.bet_type, bet.amount, combination, rules)
            is_winner = None
            multiplier = evaluation.multiplier
            prize = ZERO
            is_double = evaluation.is_double
        computed += prize
        traces.append(
            BetTrace(
                position=bet.position,
                combination=combination,
                sorted_digits="".join(sorted(combination)),
                bet_type=bet.bet_type,
                amount=evaluation.amount,
                is_double=is_double,
                multiplier=multiplier,
                is_winner=is_winner,
                prize=prize,
            )
        )

    records = {r.claim_id: r for r in ClaimRecord.history_for_ticket(session, ticket.id)}
    claims = []
    for claim in ticket.claims:
        record = records.get(claim.id)
        claims.append(
            ClaimTrace(
                claim_id=claim.id,
                status=claim.status,
                submitted_at=claim.submitted_at,
                decided_at=claim.decided_at,
                prize_amount=record.prize_amount if record else None,
                computed_prize=record.computed_prize if record else None,
                override_prize=record.override_prize if record else None,
                notes=record.notes if record else None,
            )
        )

    return TicketExplanation(
        ticket_id=ticket.id,
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        draw_id=draw.id,
        draw_label=draw.label,
        winning_number=draw.winning_number,
        rules=rules,
        bets=traces,
        computed_prize=computed,
        cached_prize=ticket.prize_amount,
        approved_prize=ticket.approved_prize,
        reprint_count=ticket.reprint_count,
        claims=claims,
    )


__all__ = ["BetTrace", "ClaimTrace", "TicketExplanation", "explain_ticket"]
