"""High-level operations callers use to drive draws, tickets and claims.

Functions that only touch one aggregate take an active ``Session`` and
``flush`` without committing, leaving the transaction to the caller.
Functions that settle, decide or reprint take a ``sessionmaker`` because
they run their own short transactions and publish notifications only after
those commit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Sequence, Union

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from .db.utils import as_utc
from .errors import (
    DrawNotReadyError,
    InvalidCombination,
    NotAuthorized,
    NotEligible,
    NotFoundError,
    ResultAlreadyPublished,
)
from .models import (
    Bet,
    ClaimRecord,
    Draw,
    DrawStatus,
    Notification,
    PrizeRule,
    Role,
    Ticket,
    User,
)
from .models.utils import generate_ticket_number
from .settlement.claims import ClaimWorkflow
from .settlement.engine import SettlementEngine, SettlementReport
from .settlement.explain import TicketExplanation, explain_ticket
from .settlement.lifecycle import transition_draw
from .settlement.matcher import normalize_combination, validate_bet_for_sale
from .settlement.reprint import ReprintDecision, reprint_ticket

if TYPE_CHECKING:
    from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

BetSpec = Union[Bet, Sequence]


def _require_admin(user: User, what: str) -> None:
    if user.role not in Role.CLAIM_DECIDERS:
        raise NotAuthorized(f"Role '{user.role}' cannot {what}")


def schedule_draw(session: Session, draw_date: date, slot: str) -> Draw:
    """Return the draw for ``draw_date``/``slot``, creating it as ``scheduled``."""
    draw = Draw.get_by_date_and_slot(session, draw_date, slot)
    if draw is None:
        draw = Draw(draw_date=draw_date, slot=slot)
        session.add(draw)
        session.flush()
    return draw


def open_draw(session: Session, draw_date: date, slot: str) -> Draw:
    """Open betting for a draw, scheduling it first when needed.

    Raises
    ------
    StaleStateError
        If the draw has already moved past ``scheduled``.
    """

    draw = schedule_draw(session, draw_date, slot)
    transition_draw(session, draw, DrawStatus.SCHEDULED, DrawStatus.OPEN)
    logger.info("Draw %s opened for betting", draw.label)
    return draw


def close_draw(session: Session, draw: Draw) -> Draw:
    """Stop ticket sales for ``draw`` (``open -> closed``)."""
    transition_draw(session, draw, DrawStatus.OPEN, DrawStatus.CLOSED)
    logger.info("Draw %s closed", draw.label)
    return draw


def issue_ticket(
    session: Session,
    agent: User,
    draw: Draw,
    bets: Iterable[BetSpec],
    *,
    now: Optional[datetime] = None,
) -> Ticket:
    """Sell a ticket for ``draw`` on behalf of ``agent``.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    agent : User
        Selling agent; must have the ``agent`` role.
    draw : Draw
        Draw the ticket is for; must be ``open`` and before its cutoff.
    bets : Iterable[Bet | tuple[str, str, Decimal]]
        Bets as :class:`Bet` instances or ``(combination, bet_type, amount)``
        tuples, kept in the given order.
    now : Optional[datetime], default: None
        Sale instant used for the cutoff check. Defaults to the current time.

    Returns
    -------
    Ticket
        The flushed ticket with a generated ``ticket_number``.

    Raises
    ------
    NotAuthorized
        If ``agent`` is not an agent.
    NotEligible
        If the draw is not open or its betting cutoff has passed.
    InvalidCombination
        If there are no bets, or a bet is malformed, non-positive or a
        triple-number rambolito.
    """

    if agent.role != Role.AGENT:
        raise NotAuthorized(f"Only agents can sell tickets, not '{agent.role}'")
    if draw.status != DrawStatus.OPEN:
        raise NotEligible(f"Draw {draw.label} is '{draw.status}', not open for betting")
    sale_time = as_utc(now) if now is not None else datetime.now(timezone.utc)
    if sale_time >= draw.cutoff_at:
        raise NotEligible(f"Betting for draw {draw.label} closed at {draw.cutoff_at}")

    prepared: list[Bet] = []
    for item in bets:
        if isinstance(item, Bet):
            combination, bet_type, amount = item.combination, item.bet_type, item.amount
        else:
            combination, bet_type, amount = item
        normalized = validate_bet_for_sale(combination, bet_type, amount)
        prepared.append(Bet(combination=normalized, bet_type=bet_type, amount=amount))
    if not prepared:
        raise InvalidCombination("A ticket needs at least one bet")

    ticket = Ticket(
        ticket_number=generate_ticket_number(draw.draw_date, session=session),
        agent_id=agent.id,
        draw_id=draw.id,
        bets=prepared,
    )
    session.add(ticket)
    session.flush()
    logger.info(
        "Ticket %s issued by %s for draw %s (%s bets, total %s)",
        ticket.ticket_number,
        agent.username,
        draw.label,
        len(prepared),
        ticket.total_amount,
    )
    return ticket


def record_prize_rule(
    session: Session,
    actor: User,
    *,
    effective_from: datetime,
    standard: Union[Decimal, int, str],
    rambolito: Union[Decimal, int, str],
    rambolito_double: Union[Decimal, int, str],
    notes: Optional[str] = None,
) -> PrizeRule:
    """Store a new prize rule version. Earlier versions are left untouched."""
    _require_admin(actor, "change prize rules")
    rule = PrizeRule(
        effective_from=effective_from,
        standard_multiplier=standard,
        rambolito_multiplier=rambolito,
        rambolito_double_multiplier=rambolito_double,
        created_by_id=actor.id,
        notes=notes,
    )
    session.add(rule)
    session.flush()
    logger.info("Prize rule %s effective from %s", rule.id, rule.effective_from)
    return rule


def publish_result(
    session_factory: sessionmaker,
    draw_id: int,
    winning_number: str,
    *,
    published_by_id: Optional[int] = None,
    dispatcher: Optional["NotificationDispatcher"] = None,
    max_workers: Optional[int] = None,
    settle: bool = True,
) -> Optional[SettlementReport]:
    """Record the winning number of a closed draw and settle it.

    The number is written by a single conditional update that only matches
    a ``closed`` draw without a number, so it can never be overwritten.

    Returns
    -------
    Optional[SettlementReport]
        The settlement report, or ``None`` when ``settle`` is ``False``.

    Raises
    ------
    InvalidCombination
        If ``winning_number`` is not three digits.
    ResultAlreadyPublished
        If the draw already has a winning number.
    DrawNotReadyError
        If the draw is not ``closed``.
    NotAuthorized
        If ``published_by_id`` names a user who is not an administrator.
    """

    number = normalize_combination(winning_number)
    with session_factory.begin() as session:
        draw = session.get(Draw, draw_id)
        if draw is None:
            raise NotFoundError(f"Draw {draw_id} not found")
        if published_by_id is not None:
            publisher = session.get(User, published_by_id)
            if publisher is None:
                raise NotFoundError(f"User {published_by_id} not found")
            _require_admin(publisher, "publish draw results")

        result = session.execute(
            update(Draw)
            .where(
                Draw.id == draw_id,
                Draw.status == DrawStatus.CLOSED,
                Draw.winning_number.is_(None),
            )
            .values(
                winning_number=number,
                published_at=datetime.now(timezone.utc),
                published_by_id=published_by_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.refresh(draw)
            if draw.winning_number is not None:
                raise ResultAlreadyPublished(
                    f"Draw {draw.label} already has winning number {draw.winning_number}"
                )
            raise DrawNotReadyError(
                f"Draw {draw.label} is '{draw.status}'; close it before publishing"
            )
        logger.info("Winning number %s published for draw %s", number, draw.label)

    if not settle:
        return None
    return settle_draw(
        session_factory, draw_id, dispatcher=dispatcher, max_workers=max_workers
    )


def settle_draw(
    session_factory: sessionmaker,
    draw_id: int,
    *,
    dispatcher: Optional["NotificationDispatcher"] = None,
    max_workers: Optional[int] = None,
) -> SettlementReport:
    """Settle (or resume settling) a published draw. Safe to repeat."""
    engine = SettlementEngine(session_factory, dispatcher, max_workers=max_workers)
    return engine.settle(draw_id)


def submit_claim(
    session_factory: sessionmaker,
    ticket_id: int,
    agent_id: int,
    *,
    dispatcher: Optional["NotificationDispatcher"] = None,
) -> int:
    """Submit a payout claim for a won ticket; returns the claim id."""
    return ClaimWorkflow(session_factory, dispatcher).submit_claim(ticket_id, agent_id)


def decide_claim(
    session_factory: sessionmaker,
    claim_id: int,
    actor_id: int,
    action: str,
    *,
    notes: Optional[str] = None,
    override_prize: Optional[Decimal] = None,
    dispatcher: Optional["NotificationDispatcher"] = None,
) -> ClaimRecord:
    """Approve or reject a pending claim and notify the agent."""
    workflow = ClaimWorkflow(session_factory, dispatcher)
    return workflow.decide(
        claim_id, actor_id, action, notes=notes, override_prize=override_prize
    )


def request_reprint(
    session_factory: sessionmaker, ticket_id: int, actor_id: int
) -> ReprintDecision:
    """Reprint a ticket if the policy allows it; the decision says why not."""
    return reprint_ticket(session_factory, ticket_id, actor_id)


def explain(session: Session, ticket_id: int) -> TicketExplanation:
    return explain_ticket(session, ticket_id)


def list_notifications(
    session: Session, user: User, *, unread_only: bool = False, limit: Optional[int] = None
) -> list[Notification]:
    return Notification.for_recipient(
        session, user.id, unread_only=unread_only, limit=limit
    )


def mark_notification_read(session: Session, user: User, notification_id: int) -> bool:
    changed = Notification.mark_read(session, notification_id, user.id)
    session.flush()
    return changed
