"""Claim submission and the single administrative decision on a claim."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from ..errors import (
    AlreadyDecided,
    DrawNotReadyError,
    InvalidTransition,
    NotAuthorized,
    NotEligible,
    NotFoundError,
    StaleStateError,
)
from ..events import ClaimDecided
from ..models import Claim, ClaimRecord, ClaimStatus, Role, Ticket, TicketStatus, User
from .lifecycle import transition_ticket
from .matcher import CENT, ZERO, MatchRuleRegistry, PrizeRuleSnapshot, evaluate_bets

if TYPE_CHECKING:
    from ..notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def open_claim(session: Session, ticket_id: int, agent_id: int) -> Claim:
    """Move a won ticket to ``pending_approval`` and create its pending claim.

    Raises
    ------
    NotFoundError
        If the ticket does not exist.
    NotEligible
        If the ticket belongs to another agent or is not ``won``.
    """

    ticket = session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    if ticket.agent_id != agent_id:
        raise NotEligible(f"Ticket {ticket.ticket_number} belongs to another agent")
    if ticket.status != TicketStatus.WON:
        raise NotEligible(
            f"Ticket {ticket.ticket_number} is '{ticket.status}'; only won tickets can be claimed"
        )

    try:
        transition_ticket(session, ticket, TicketStatus.WON, TicketStatus.PENDING_APPROVAL)
    except StaleStateError as exc:
        raise NotEligible(
            f"Ticket {ticket.ticket_number} is '{exc.actual}'; only won tickets can be claimed"
        ) from exc

    claim = Claim(ticket_id=ticket.id, agent_id=agent_id)
    session.add(claim)
    session.flush()
    logger.info("Claim %s submitted for ticket %s", claim.id, ticket.ticket_number)
    return claim


def _normalize_override(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Override prize '{value}' is not a number") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Override prize must be zero or positive, got {value}")
    return amount.quantize(CENT)


def record_decision(
    session: Session,
    claim_id: int,
    actor_id: int,
    action: str,
    *,
    notes: Optional[str] = None,
    override_prize: Optional[Decimal] = None,
    registry: Optional[MatchRuleRegistry] = None,
) -> tuple[ClaimRecord, ClaimDecided]:
    """Decide ``claim_id`` inside the caller's transaction.

    The claim leaves ``pending`` through one conditional update, so of two
    concurrent deciders exactly one succeeds and the other gets
    :class:`~drawsettle.errors.AlreadyDecided`.

    The payable prize is recomputed from the bets with the prize rule the
    ticket was settled under; ``Ticket.prize_amount`` is only compared
    against it. An ``override_prize`` replaces the payable amount on
    approval and is stored next to the computed one.

    Returns
    -------
    tuple[ClaimRecord, ClaimDecided]
        The appended audit row and the event to publish once committed.

    Raises
    ------
    NotAuthorized
        If the actor is not an admin or superadmin.
    NotFoundError
        If the actor or claim does not exist.
    AlreadyDecided
        If the claim is no longer pending.
    """

    if action not in ClaimStatus.DECISIONS:
        raise InvalidTransition(f"Unknown claim action '{action}'")
    override = _normalize_override(override_prize)
    if override is not None and action != ClaimStatus.APPROVED:
        raise ValueError("An override prize only applies to approvals")

    actor = session.get(User, actor_id)
    if actor is None:
        raise NotFoundError(f"User {actor_id} not found")
    if actor.role not in Role.CLAIM_DECIDERS:
        raise NotAuthorized(f"Role '{actor.role}' cannot decide claims")

    claim = session.get(Claim, claim_id)
    if claim is None:
        raise NotFoundError(f"Claim {claim_id} not found")

    decided_at = datetime.now(timezone.utc)
    result = session.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status == ClaimStatus.PENDING)
        .values(status=action, decided_at=decided_at, decided_by_id=actor_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.expire(claim, ["status"])
        raise AlreadyDecided(f"Claim {claim_id} was already {claim.status}")
    set_committed_value(claim, "status", action)
    set_committed_value(claim, "decided_at", decided_at)
    set_committed_value(claim, "decided_by_id", actor_id)

    ticket = claim.ticket
    draw = ticket.draw
    if draw.winning_number is None:
        raise DrawNotReadyError(f"Draw {draw.id} has no winning number")
    rules = PrizeRuleSnapshot.from_model(ticket.prize_rule)
    computed = evaluate_bets(ticket.bets, draw.winning_number, rules, registry=registry).prize
    if ticket.prize_amount is not None and ticket.prize_amount != computed:
        logger.warning(
            "Ticket %s cached prize %s differs from recomputed %s; using recomputed",
            ticket.ticket_number,
            ticket.prize_amount,
            computed,
        )

    if action == ClaimStatus.APPROVED:
        payable = override if override is not None else computed
        transition_ticket(
            session,
            ticket,
            TicketStatus.PENDING_APPROVAL,
            TicketStatus.APPROVED,
            approved_prize=payable,
        )
    else:
        payable = ZERO
        transition_ticket(session, ticket, TicketStatus.PENDING_APPROVAL, TicketStatus.WON)

    record = ClaimRecord(
        claim_id=claim.id,
        ticket_id=ticket.id,
        action=action,
        decided_by_id=actor_id,
        prize_amount=payable,
        computed_prize=computed,
        override_prize=override,
        notes=notes,
    )
    session.add(record)
    session.flush()

    logger.info(
        "Claim %s %s by %s (payable %s, computed %s)",
        claim.id,
        action,
        actor.username,
        payable,
        computed,
    )
    event = ClaimDecided(
        claim_id=claim.id,
        ticket_id=ticket.id,
        ticket_number=ticket.ticket_number,
        draw_id=draw.id,
        agent_id=claim.agent_id,
        action=action,
        prize=payable,
        notes=notes,
    )
    return record, event


class ClaimWorkflow:
    """Owns the transactions for submitting and deciding claims.

    Decision notifications are published only after the decision commits.
    Pair with a session factory built with ``expire_on_commit=False`` (see
    :func:`drawsettle.db.engine.get_sessionmaker`) so returned rows stay
    readable.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: Optional["NotificationDispatcher"] = None,
        *,
        registry: Optional[MatchRuleRegistry] = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._registry = registry

    def submit_claim(self, ticket_id: int, agent_id: int) -> int:
        """Submit a claim for a won ticket and return the new claim id."""
        with self._session_factory.begin() as session:
            claim = open_claim(session, ticket_id, agent_id)
            claim_id = claim.id
        return claim_id

    def decide(
        self,
        claim_id: int,
        actor_id: int,
        action: str,
        notes: Optional[str] = None,
        override_prize: Optional[Decimal] = None,
    ) -> ClaimRecord:
        """Approve or reject a pending claim. See :func:`record_decision`."""
        with self._session_factory.begin() as session:
            record, event = record_decision(
                session,
                claim_id,
                actor_id,
                action,
                notes=notes,
                override_prize=override_prize,
                registry=self._registry,
            )
        if self._dispatcher is not None:
            # The decision is committed; delivery problems must not undo the call.
            try:
                self._dispatcher.publish(event)
            except Exception:
                logger.exception("Could not publish decision for claim %s", claim_id)
        return record

    def approve(self, claim_id: int, actor_id: int, **kwargs) -> ClaimRecord:
        return self.decide(claim_id, actor_id, ClaimStatus.APPROVED, **kwargs)

    def reject(self, claim_id: int, actor_id: int, notes: Optional[str] = None) -> ClaimRecord:
        return self.decide(claim_id, actor_id, ClaimStatus.REJECTED, notes=notes)


__all__ = ["ClaimWorkflow", "open_claim", "record_decision"]
