"""Settle every ticket of a draw once its winning number is published."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

from ..errors import DrawNotReadyError, NotFoundError, StaleStateError
from ..events import TicketWon
from ..models import Draw, DrawStatus, PrizeRule, Ticket, TicketStatus
from .lifecycle import transition_draw, transition_ticket
from .matcher import ZERO, MatchRuleRegistry, PrizeRuleSnapshot, evaluate_bets

if TYPE_CHECKING:
    from ..notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketFailure:
    """A ticket that raised while being settled. It stays ``active``."""

    ticket_id: int
    error: str


@dataclass
class SettlementReport:
    """Summary of one :meth:`SettlementEngine.settle` run.

    Attributes
    ----------
    draw_id : int
        Draw that was settled.
    winning_number : Optional[str]
        Winning number the tickets were matched against.
    rule_id : Optional[int]
        Prize rule version applied, ``None`` for the built-in defaults.
    processed : int
        Tickets moved out of ``active`` by this run.
    won, no_win : int
        Split of ``processed`` by outcome.
    skipped : int
        Tickets another run had already settled.
    total_prize : Decimal
        Sum of prizes for the tickets won in this run.
    failures : list[TicketFailure]
        Tickets that could not be settled; the draw stays ``closed``.
    settled : bool
        Whether the draw is ``settled`` after the run.
    already_settled : bool
        ``True`` when the draw was settled before the run started and
        nothing was touched.
    """

    draw_id: int
    winning_number: Optional[str]
    rule_id: Optional[int] = None
    processed: int = 0
    won: int = 0
    no_win: int = 0
    skipped: int = 0
    total_prize: Decimal = ZERO
    failures: list[TicketFailure] = field(default_factory=list)
    settled: bool = False
    already_settled: bool = False


@dataclass(frozen=True)
class _TicketOutcome:
    ticket_id: int
    status: str
    prize: Decimal = ZERO
    error: Optional[str] = None


_SKIPPED = "skipped"
_FAILED = "failed"


class SettlementEngine:
    """Match a draw's tickets against its winning number and move them on.

    Each ticket is settled in its own transaction through a guarded
    ``active -> won|no_win`` update, so two engines running on the same draw
    settle every ticket exactly once between them.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: Optional["NotificationDispatcher"] = None,
        *,
        max_workers: Optional[int] = None,
        registry: Optional[MatchRuleRegistry] = None,
    ) -> None:
        """
        Parameters
        ----------
        session_factory : sessionmaker
            Factory producing the sessions each ticket transaction runs in.
        dispatcher : Optional[NotificationDispatcher], default: None
            Receives a :class:`~drawsettle.events.TicketWon` per won ticket
            after its transaction commits.
        max_workers : Optional[int], default: None
            Threads used to settle tickets. Defaults to the
            ``SETTLEMENT_WORKERS`` environment variable, or 1.
        registry : Optional[MatchRuleRegistry], default: None
            Bet-type rules; the default registry is used when omitted.
        """

        if max_workers is None:
            load_dotenv()
            max_workers = int(os.getenv("SETTLEMENT_WORKERS", "1"))
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._max_workers = max_workers
        self._registry = registry

    def settle(self, draw_id: int) -> SettlementReport:
        """Settle all ``active`` tickets of ``draw_id``.

        Re-running is safe: tickets already moved out of ``active`` are
        skipped, and a draw that is already ``settled`` yields an empty report
        with ``already_settled`` set.

        Raises
        ------
        NotFoundError
            If the draw does not exist.
        DrawNotReadyError
            If the draw is not ``closed`` or has no winning number.
        """

        with self._session_factory() as session:
            draw = session.get(Draw, draw_id)
            if draw is None:
                raise NotFoundError(f"Draw {draw_id} not found")
            if draw.status == DrawStatus.SETTLED:
                logger.info("Draw %s is already settled; nothing to do", draw_id)
                return SettlementReport(
                    draw_id=draw_id,
                    winning_number=draw.winning_number,
                    settled=True,
                    already_settled=True,
                )
            if draw.status != DrawStatus.CLOSED or draw.winning_number is None:
                raise DrawNotReadyError(
                    f"Draw {draw_id} is '{draw.status}' with winning number "
                    f"{draw.winning_number!r}; it must be closed and published"
                )
            winning_number = draw.winning_number
            rules = PrizeRuleSnapshot.from_model(
                PrizeRule.effective_at(session, draw.scheduled_at)
            )
            ticket_ids = Ticket.ids_for_draw(session, draw_id, status=TicketStatus.ACTIVE)

        report = SettlementReport(
            draw_id=draw_id, winning_number=winning_number, rule_id=rules.rule_id
        )
        logger.info(
            "Settling draw %s: %s active tickets, winning number %s, %s worker(s)",
            draw_id,
            len(ticket_ids),
            winning_number,
            self._max_workers,
        )

        if self._max_workers > 1 and len(ticket_ids) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                outcomes = list(
                    pool.map(
                        lambda tid: self._settle_ticket(tid, draw_id, winning_number, rules),
                        ticket_ids,
                    )
                )
        else:
            outcomes = [
                self._settle_ticket(tid, draw_id, winning_number, rules)
                for tid in ticket_ids
            ]

        for outcome in outcomes:
            if outcome.status == TicketStatus.WON:
                report.processed += 1
                report.won += 1
                report.total_prize += outcome.prize
            elif outcome.status == TicketStatus.NO_WIN:
                report.processed += 1
                report.no_win += 1
            elif outcome.status == _SKIPPED:
                report.skipped += 1
            else:
                report.failures.append(
                    TicketFailure(ticket_id=outcome.ticket_id, error=outcome.error or "")
                )

        if report.failures:
            logger.warning(
                "Draw %s left closed: %s ticket(s) failed to settle",
                draw_id,
                len(report.failures),
            )
        else:
            report.settled = self._mark_draw_settled(draw_id)

        logger.info(
            "Draw %s settlement: %s won, %s no_win, %s skipped, %s failed, prize total %s",
            draw_id,
            report.won,
            report.no_win,
            report.skipped,
            len(report.failures),
            report.total_prize,
        )
        return report

    def _settle_ticket(
        self,
        ticket_id: int,
        draw_id: int,
        winning_number: str,
        rules: PrizeRuleSnapshot,
    ) -> _TicketOutcome:
        event: Optional[TicketWon] = None
        try:
            with self._session_factory.begin() as session:
                ticket = session.get(Ticket, ticket_id)
                if ticket is None or ticket.status != TicketStatus.ACTIVE:
                    return _TicketOutcome(ticket_id, _SKIPPED)

                evaluation = evaluate_bets(
                    ticket.bets, winning_number, rules, registry=self._registry
                )
                target = TicketStatus.WON if evaluation.is_winner else TicketStatus.NO_WIN
                transition_ticket(
                    session,
                    ticket,
                    TicketStatus.ACTIVE,
                    target,
                    prize_amount=evaluation.prize,
                    prize_rule_id=rules.rule_id,
                    settled_at=datetime.now(timezone.utc),
                )
                if evaluation.is_winner:
                    event = TicketWon(
                        ticket_id=ticket.id,
                        ticket_number=ticket.ticket_number,
                        draw_id=draw_id,
                        agent_id=ticket.agent_id,
                        winning_number=evaluation.winning_number,
                        prize=evaluation.prize,
                    )
        except StaleStateError:
            logger.info("Ticket %s was settled concurrently; skipping", ticket_id)
            return _TicketOutcome(ticket_id, _SKIPPED)
        except Exception as exc:
            logger.exception("Failed to settle ticket %s of draw %s", ticket_id, draw_id)
            return _TicketOutcome(ticket_id, _FAILED, error=str(exc) or type(exc).__name__)

        if event is not None:
            if self._dispatcher is not None:
                try:
                    self._dispatcher.publish(event)
                except Exception:
                    logger.exception("Could not publish win for ticket %s", ticket_id)
            return _TicketOutcome(ticket_id, TicketStatus.WON, prize=event.prize)
        return _TicketOutcome(ticket_id, TicketStatus.NO_WIN)

    def _mark_draw_settled(self, draw_id: int) -> bool:
        try:
            with self._session_factory.begin() as session:
                draw = session.get(Draw, draw_id)
                if draw is None:
                    raise NotFoundError(f"Draw {draw_id} not found")
                transition_draw(
                    session,
                    draw,
                    DrawStatus.CLOSED,
                    DrawStatus.SETTLED,
                    settled_at=datetime.now(timezone.utc),
                )
        except StaleStateError as exc:
            # Another run finished the draw first.
            return exc.actual == DrawStatus.SETTLED
        return True


__all__ = ["SettlementEngine", "SettlementReport", "TicketFailure"]
