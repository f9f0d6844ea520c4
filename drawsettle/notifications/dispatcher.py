"""Persist and fan out notifications for domain events."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from ..events import ClaimDecided, Event, TicketWon
from ..models import ClaimStatus, Notification, NotificationType, Role, User
from .transports import NotificationTransport

logger = logging.getLogger(__name__)


def resolve_recipients(session: Session, event: Event) -> list[User]:
    """Return the users who should hear about ``event``.

    A win goes to the owning agent, the agent's coordinator and, when the
    coordinator reports to one, the area coordinator. A claim decision only
    goes to the agent who submitted the claim.
    """

    agent = session.get(User, event.agent_id)
    if agent is None:
        logger.warning("No user %s for %s", event.agent_id, type(event).__name__)
        return []
    if isinstance(event, ClaimDecided):
        return [agent]

    recipients = [agent]
    coordinator = agent.upline
    if coordinator is not None:
        recipients.append(coordinator)
        area = coordinator.upline
        if area is not None and area.role == Role.AREA_COORDINATOR:
            recipients.append(area)

    seen: set[int] = set()
    unique = []
    for user in recipients:
        if user.id not in seen:
            seen.add(user.id)
            unique.append(user)
    return unique


def _win_notification(recipient: User, event: TicketWon, agent: User) -> Notification:
    prize = f"{event.prize:,.2f}"
    if recipient.id == event.agent_id:
        title = "Winning ticket"
        message = (
            f"Ticket {event.ticket_number} won PHP {prize} "
            f"on winning number {event.winning_number}."
        )
    else:
        title = "Agent winning ticket"
        message = (
            f"{agent.display_name} sold winning ticket {event.ticket_number} "
            f"(PHP {prize}, winning number {event.winning_number})."
        )
    return Notification(
        recipient_id=recipient.id,
        type=NotificationType.WIN,
        title=title,
        message=message,
        ticket_id=event.ticket_id,
        draw_id=event.draw_id,
        payload={
            "ticket_number": event.ticket_number,
            "winning_number": event.winning_number,
            "prize": str(event.prize),
            "agent_id": event.agent_id,
        },
    )


def _decision_notification(recipient: User, event: ClaimDecided) -> Notification:
    if event.action == ClaimStatus.APPROVED:
        kind = NotificationType.CLAIM_APPROVED
        title = "Claim approved"
        message = f"Claim for ticket {event.ticket_number} approved: PHP {event.prize:,.2f}."
    else:
        kind = NotificationType.CLAIM_REJECTED
        title = "Claim rejected"
        message = f"Claim for ticket {event.ticket_number} was rejected."
    if event.notes:
        message = f"{message} Note: {event.notes}"
    return Notification(
        recipient_id=recipient.id,
        type=kind,
        title=title,
        message=message,
        ticket_id=event.ticket_id,
        draw_id=event.draw_id,
        claim_id=event.claim_id,
        payload={
            "ticket_number": event.ticket_number,
            "action": event.action,
            "prize": str(event.prize),
        },
    )


def build_notifications(session: Session, event: Event) -> list[Notification]:
    """Create (but do not add) one notification per recipient of ``event``."""
    if not isinstance(event, (TicketWon, ClaimDecided)):
        raise TypeError(f"Unsupported event type {type(event).__name__}")

    recipients = resolve_recipients(session, event)
    if isinstance(event, ClaimDecided):
        return [_decision_notification(user, event) for user in recipients]

    agent = session.get(User, event.agent_id)
    return [_win_notification(user, event, agent) for user in recipients]


class NotificationDispatcher:
    """Write notifications for domain events and hand them to transports.

    The dispatcher runs outside the transaction that produced the event, so a
    failure here can never roll back a settlement or claim decision.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        transports: Optional[Iterable[NotificationTransport]] = None,
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Parameters
        ----------
        session_factory : sessionmaker
            Factory for the short transaction that stores notifications.
        transports : Optional[Iterable[NotificationTransport]], default: None
            Delivery adapters called after the rows are committed.
        executor : Optional[Executor], default: None
            When set, :meth:`publish` submits dispatching to it instead of
            running inline.
        """

        self._session_factory = session_factory
        self._transports: list[NotificationTransport] = list(transports or [])
        self._executor = executor

    def add_transport(self, transport: NotificationTransport) -> None:
        self._transports.append(transport)

    def dispatch(self, event: Event) -> list[int]:
        """Persist notifications for ``event`` and deliver them.

        Returns
        -------
        list[int]
            Ids of the stored notifications. Empty when nothing was stored,
            including when storing failed (the failure is logged, not raised).
        """

        try:
            with self._session_factory.begin() as session:
                notifications = build_notifications(session, event)
                session.add_all(notifications)
                session.flush()
                ids = [n.id for n in notifications]
                payloads = [n.to_json() for n in notifications]
        except Exception:
            logger.exception("Failed to store notifications for %r", event)
            return []

        self._deliver(payloads)
        logger.debug("Dispatched %s notifications for %s", len(ids), type(event).__name__)
        return ids

    def publish(self, event: Event) -> Union[list[int], Future, None]:
        """Dispatch ``event`` inline, or fire-and-forget on the executor.

        Returns ``None`` when the executor refuses the task (for example
        after it was shut down); the refusal is logged.
        """
        if self._executor is None:
            return self.dispatch(event)
        try:
            return self._executor.submit(self.dispatch, event)
        except Exception:
            logger.exception("Executor refused notification for %r", event)
            return None

    def _deliver(self, payloads: list[dict]) -> None:
        for transport in self._transports:
            for payload in payloads:
                try:
                    transport.deliver(payload)
                except Exception:
                    logger.warning(
                        "Transport %s failed for notification %s",
                        type(transport).__name__,
                        payload.get("id"),
                        exc_info=True,
                    )


def notifications_for(
    session: Session,
    user: Union[User, int],
    *,
    unread_only: bool = False,
    limit: Optional[int] = None,
) -> list[Notification]:
    """Return ``user``'s notifications, newest first."""
    recipient_id = user.id if isinstance(user, User) else user
    return Notification.for_recipient(
        session, recipient_id, unread_only=unread_only, limit=limit
    )


def unread_count(session: Session, user: Union[User, int]) -> int:
    recipient_id = user.id if isinstance(user, User) else user
    return Notification.unread_count(session, recipient_id)


def mark_read(session: Session, notification_id: int, recipient_id: int) -> bool:
    """Mark one notification read; ``False`` if not found or already read."""
    return Notification.mark_read(session, notification_id, recipient_id)


def mark_all_read(session: Session, recipient_id: int) -> int:
    return Notification.mark_all_read(session, recipient_id)


__all__ = [
    "NotificationDispatcher",
    "build_notifications",
    "mark_all_read",
    "mark_read",
    "notifications_for",
    "resolve_recipients",
    "unread_count",
]
