"""Physical ticket reprint rules.

A ticket may be reprinted at most :data:`REPRINT_LIMIT` times, only by the
agent who sold it, and never once it has won (the paper is then evidence for
a payout).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from ..errors import NotFoundError, StaleStateError
from ..models import Ticket, TicketReprint, TicketStatus

logger = logging.getLogger(__name__)

REPRINT_LIMIT = 2

SETTLED_STATUSES = (
    TicketStatus.WON,
    TicketStatus.PENDING_APPROVAL,
    TicketStatus.APPROVED,
)


class ReprintDenial(str, enum.Enum):
    LIMIT_REACHED = "LimitReached"
    TICKET_SETTLED = "TicketSettled"
    NOT_OWNER = "NotOwner"


@dataclass(frozen=True)
class ReprintDecision:
    """Whether a reprint is (or was) allowed.

    ``reprint_count`` is the counter after a successful reprint, or the
    stored counter when the request was denied.
    """

    allowed: bool
    reason: Optional[ReprintDenial] = None
    reprint_count: Optional[int] = None


def can_reprint(ticket: Ticket, actor_id: Optional[int] = None) -> ReprintDecision:
    """Evaluate the reprint policy against ``ticket`` without changing it.

    The limit is checked before the status, so a ticket that used both
    reprints reports ``LimitReached`` whatever its status.
    """

    count = ticket.reprint_count
    if count >= REPRINT_LIMIT:
        return ReprintDecision(False, ReprintDenial.LIMIT_REACHED, count)
    if ticket.status in SETTLED_STATUSES:
        return ReprintDecision(False, ReprintDenial.TICKET_SETTLED, count)
    if actor_id is not None and actor_id != ticket.agent_id:
        return ReprintDecision(False, ReprintDenial.NOT_OWNER, count)
    return ReprintDecision(True, None, count)


def apply_reprint(session: Session, ticket_id: int, actor_id: int) -> ReprintDecision:
    """Increment the reprint counter inside the caller's transaction.

    The check and the increment are one conditional ``UPDATE``, so two
    concurrent requests on a ticket with one reprint left cannot both pass.

    Raises
    ------
    NotFoundError
        If the ticket does not exist.
    """

    result = session.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket_id,
            Ticket.agent_id == actor_id,
            Ticket.reprint_count < REPRINT_LIMIT,
            Ticket.status.not_in(SETTLED_STATUSES),
        )
        .values(reprint_count=Ticket.reprint_count + 1)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        ticket = session.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        decision = can_reprint(ticket, actor_id)
        if decision.allowed:
            raise StaleStateError(
                f"Ticket {ticket_id} changed while reprinting",
                expected=TicketStatus.ACTIVE,
                actual=ticket.status,
            )
        logger.info(
            "Reprint of ticket %s by user %s denied: %s",
            ticket_id,
            actor_id,
            decision.reason.value if decision.reason else "unknown",
        )
        return decision

    new_count = session.scalar(select(Ticket.reprint_count).where(Ticket.id == ticket_id))
    session.add(
        TicketReprint(
            ticket_id=ticket_id,
            reprinted_by_id=actor_id,
            reprint_number=new_count,
        )
    )
    session.flush()
    # Keep an already-loaded instance in step with the row.
    cached = session.get(Ticket, ticket_id, populate_existing=True)
    logger.info("Ticket %s reprinted (%s/%s)", cached.ticket_number, new_count, REPRINT_LIMIT)
    return ReprintDecision(True, None, new_count)


def reprint_ticket(
    session_factory: sessionmaker, ticket_id: int, actor_id: int
) -> ReprintDecision:
    """Run :func:`apply_reprint` in its own transaction."""
    with session_factory.begin() as session:
        return apply_reprint(session, ticket_id, actor_id)


__all__ = [
    "REPRINT_LIMIT",
    "ReprintDecision",
    "ReprintDenial",
    "apply_reprint",
    "can_reprint",
    "reprint_ticket",
]
