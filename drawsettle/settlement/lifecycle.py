"""Status state machines for tickets and draws.

Every transition is one ``UPDATE ... WHERE id = :id AND status = :expected``.
If another writer moved the row first, no row matches and the caller gets a
:class:`~drawsettle.errors.StaleStateError` instead of overwriting it.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ..errors import InvalidTransition, StaleStateError
from ..models import Draw, DrawStatus, Ticket, TicketStatus

logger = logging.getLogger(__name__)

TICKET_TRANSITIONS: Mapping[str, frozenset[str]] = {
    TicketStatus.ACTIVE: frozenset({TicketStatus.WON, TicketStatus.NO_WIN}),
    TicketStatus.WON: frozenset({TicketStatus.PENDING_APPROVAL}),
    # Rejection sends the ticket back to ``won``; the claim itself stays rejected.
    TicketStatus.PENDING_APPROVAL: frozenset({TicketStatus.APPROVED, TicketStatus.WON}),
    TicketStatus.NO_WIN: frozenset(),
    TicketStatus.APPROVED: frozenset(),
}

DRAW_TRANSITIONS: Mapping[str, frozenset[str]] = {
    DrawStatus.SCHEDULED: frozenset({DrawStatus.OPEN}),
    DrawStatus.OPEN: frozenset({DrawStatus.CLOSED}),
    DrawStatus.CLOSED: frozenset({DrawStatus.SETTLED}),
    DrawStatus.SETTLED: frozenset(),
}

_Row = TypeVar("_Row", Ticket, Draw)


def can_transition(expected: str, target: str) -> bool:
    """Return ``True`` when ``expected -> target`` is a legal ticket move."""
    return target in TICKET_TRANSITIONS.get(expected, frozenset())


def is_terminal(status: str) -> bool:
    return status in TicketStatus.TERMINAL


def _guarded_update(
    session: Session,
    obj: _Row,
    table: Mapping[str, frozenset[str]],
    expected: str,
    target: str,
    values: Mapping[str, Any],
) -> _Row:
    model = type(obj)
    if target not in table.get(expected, frozenset()):
        raise InvalidTransition(
            f"{model.__name__} cannot move from '{expected}' to '{target}'"
        )
    if obj.id is None:
        raise ValueError(f"{model.__name__} must be persisted before changing status")

    new_values = dict(values)
    new_values["status"] = target
    result = session.execute(
        update(model)
        .where(model.id == obj.id, model.status == expected)
        .values(**new_values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Reload so the caller can inspect the state that won the race.
        session.expire(obj, ["status"])
        actual = obj.status
        logger.info(
            "Stale %s transition on id=%s: expected %s, found %s",
            model.__name__,
            obj.id,
            expected,
            actual,
        )
        raise StaleStateError(
            f"{model.__name__} {obj.id} is '{actual}', not '{expected}'",
            expected=expected,
            actual=actual,
        )

    # Mirror the committed row without marking the instance dirty.
    for key, value in new_values.items():
        set_committed_value(obj, key, value)
    return obj


def transition_ticket(
    session: Session,
    ticket: Ticket,
    expected: str,
    target: str,
    **values: Any,
) -> Ticket:
    """Move ``ticket`` from ``expected`` to ``target`` atomically.

    Parameters
    ----------
    session : Session
        Session whose transaction the update joins.
    ticket : Ticket
        Persisted ticket. Its in-memory status is not trusted; the database
        row decides.
    expected : str
        Status the caller believes the ticket is in.
    target : str
        Status to move to.
    **values
        Additional columns written in the same statement (e.g. ``prize_amount``).

    Returns
    -------
    Ticket
        The same instance with the written values applied.

    Raises
    ------
    InvalidTransition
        If ``expected -> target`` is not in :data:`TICKET_TRANSITIONS`.
    StaleStateError
        If the stored status is no longer ``expected``.
    """

    return _guarded_update(session, ticket, TICKET_TRANSITIONS, expected, target, values)


def transition_draw(
    session: Session,
    draw: Draw,
    expected: str,
    target: str,
    **values: Any,
) -> Draw:
    """Move ``draw`` along ``scheduled -> open -> closed -> settled``."""

    return _guarded_update(session, draw, DRAW_TRANSITIONS, expected, target, values)


__all__ = [
    "DRAW_TRANSITIONS",
    "TICKET_TRANSITIONS",
    "can_transition",
    "is_terminal",
    "transition_draw",
    "transition_ticket",
]
