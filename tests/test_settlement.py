import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select, update

from drawsettle.errors import DrawNotReadyError, NotFoundError
from drawsettle.events import TicketWon
from drawsettle.models import Draw, DrawStatus, Notification, Ticket, TicketStatus, User
from drawsettle.notifications import InMemoryTransport, NotificationDispatcher
from drawsettle.settlement.engine import SettlementEngine
from drawsettle.settlement.matcher import DEFAULT_MATCH_RULES, MatchRule, MatchRuleRegistry
from drawsettle.workflows import record_prize_rule

from support import DBTestCase, FileDBTestCase


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


class ExplodingTransport:
    def deliver(self, notification):
        raise ConnectionError("transport down")


def _exploding_registry(bad_combination: str) -> MatchRuleRegistry:
    registry = MatchRuleRegistry()
    for bet_type, rule in DEFAULT_MATCH_RULES.available_bet_types().items():
        registry.register(rule)

    standard = DEFAULT_MATCH_RULES.get("standard").matcher

    def flaky(combination, winning_number, rules):
        if combination == bad_combination:
            raise RuntimeError("matcher crashed")
        return standard(combination, winning_number, rules)

    registry.register(MatchRule("standard", flaky), replace=True)
    return registry


class SettlementTests(DBTestCase):
    def setUp(self):
        super().setUp()
        self.users = self.seed_users()
        self.draw_id = self.open_draw()

    def _ticket(self, ticket_id: int) -> Ticket:
        with self.Session() as session:
            return session.get(Ticket, ticket_id)

    def _draw(self) -> Draw:
        with self.Session() as session:
            return session.get(Draw, self.draw_id)

    def _notification_count(self) -> int:
        with self.Session() as session:
            return session.scalar(select(func.count(Notification.id)))

    def test_standard_win_with_losing_rambolito(self):
        ticket_id = self.sell(
            self.draw_id,
            self.users.agent,
            [("455", "standard", 10), ("456", "rambolito", 10)],
        )
        self.close_and_publish(self.draw_id, "455")
        recorder = RecordingDispatcher()

        report = SettlementEngine(self.Session, recorder, max_workers=1).settle(self.draw_id)

        self.assertTrue(report.settled)
        self.assertEqual((report.processed, report.won, report.no_win), (1, 1, 0))
        self.assertEqual(report.total_prize, Decimal("4500.00"))
        ticket = self._ticket(ticket_id)
        self.assertEqual(ticket.status, TicketStatus.WON)
        self.assertEqual(ticket.prize_amount, Decimal("4500.00"))
        self.assertIsNotNone(ticket.settled_at)
        self.assertIsNone(ticket.prize_rule_id)
        self.assertEqual(self._draw().status, DrawStatus.SETTLED)

        self.assertEqual(len(recorder.events), 1)
        event = recorder.events[0]
        self.assertIsInstance(event, TicketWon)
        self.assertEqual(event.ticket_id, ticket_id)
        self.assertEqual(event.prize, Decimal("4500.00"))

    def test_rambolito_double_win(self):
        ticket_id = self.sell(self.draw_id, self.users.agent, [("677", "rambolito", 5)])
        self.close_and_publish(self.draw_id, "767")

        SettlementEngine(self.Session, max_workers=1).settle(self.draw_id)

        ticket = self._ticket(ticket_id)
        self.assertEqual(ticket.status, TicketStatus.WON)
        self.assertEqual(ticket.prize_amount, Decimal("750.00"))

    def test_losing_ticket_gets_no_event(self):
        ticket_id = self.sell(self.draw_id, self.users.agent, [("123", "standard", 5)])
        self.close_and_publish(self.draw_id, "999")
        recorder = RecordingDispatcher()

        report = SettlementEngine(self.Session, recorder, max_workers=1).settle(self.draw_id)

        self.assertEqual(report.no_win, 1)
        self.assertEqual(recorder.events, [])
        ticket = self._ticket(ticket_id)
        self.assertEqual(ticket.status, TicketStatus.NO_WIN)
        self.assertEqual(ticket.prize_amount, Decimal("0.00"))

    def test_second_settle_is_a_no_op(self):
        self.sell(self.draw_id, self.users.agent, [("455", "standard", 10)])
        self.sell(self.draw_id, self.users.lone_agent, [("111", "standard", 10)])
        self.close_and_publish(self.draw_id, "455")
        transport = InMemoryTransport()
        dispatcher = NotificationDispatcher(self.Session, [transport])
        engine = SettlementEngine(self.Session, dispatcher, max_workers=1)

        first = engine.settle(self.draw_id)
        count_after_first = self._notification_count()
        second = engine.settle(self.draw_id)

        self.assertFalse(first.already_settled)
        self.assertEqual(first.won, 1)
        self.assertTrue(second.already_settled)
        self.assertEqual((second.processed, second.won, second.skipped), (0, 0, 0))
        # agent, coordinator and area coordinator
        self.assertEqual(count_after_first, 3)
        self.assertEqual(self._notification_count(), count_after_first)
        self.assertEqual(len(transport), 3)

    def test_requires_closed_draw_with_number(self):
        engine = SettlementEngine(self.Session, max_workers=1)
        with self.assertRaises(DrawNotReadyError):
            engine.settle(self.draw_id)
        self.close(self.draw_id)
        with self.assertRaises(DrawNotReadyError):
            engine.settle(self.draw_id)
        with self.assertRaises(NotFoundError):
            engine.settle(9999)

    def test_tickets_no_longer_active_are_skipped(self):
        done = self.sell(self.draw_id, self.users.agent, [("455", "standard", 1)])
        pending = self.sell(self.draw_id, self.users.agent, [("455", "standard", 2)])
        self.close_and_publish(self.draw_id, "455")
        with self.Session.begin() as session:
            session.execute(
                update(Ticket)
                .where(Ticket.id == done)
                .values(status=TicketStatus.WON, prize_amount=Decimal("450.00"))
            )
        recorder = RecordingDispatcher()

        report = SettlementEngine(self.Session, recorder, max_workers=1).settle(self.draw_id)

        self.assertEqual(report.won, 1)
        self.assertEqual([e.ticket_id for e in recorder.events], [pending])
        self.assertTrue(report.settled)

    def test_failed_ticket_keeps_draw_closed_until_rerun(self):
        good = self.sell(self.draw_id, self.users.agent, [("455", "standard", 1)])
        bad = self.sell(self.draw_id, self.users.agent, [("999", "standard", 1)])
        self.close_and_publish(self.draw_id, "455")
        recorder = RecordingDispatcher()

        with self.assertLogs("drawsettle.settlement.engine", level="ERROR"):
            report = SettlementEngine(
                self.Session,
                recorder,
                max_workers=1,
                registry=_exploding_registry("999"),
            ).settle(self.draw_id)

        self.assertFalse(report.settled)
        self.assertEqual(report.won, 1)
        self.assertEqual([f.ticket_id for f in report.failures], [bad])
        self.assertIn("matcher crashed", report.failures[0].error)
        self.assertEqual(self._draw().status, DrawStatus.CLOSED)
        self.assertEqual(self._ticket(bad).status, TicketStatus.ACTIVE)
        self.assertEqual(self._ticket(good).status, TicketStatus.WON)

        rerun = SettlementEngine(self.Session, recorder, max_workers=1).settle(self.draw_id)

        self.assertTrue(rerun.settled)
        self.assertEqual((rerun.processed, rerun.no_win, rerun.won), (1, 1, 0))
        self.assertEqual(self._draw().status, DrawStatus.SETTLED)
        self.assertEqual(len(recorder.events), 1)

    def test_prize_rule_in_force_at_draw_time_is_used(self):
        draw = self._draw()
        with self.Session.begin() as session:
            root = session.get(User, self.users.superadmin)
            old = record_prize_rule(
                session,
                root,
                effective_from=draw.scheduled_at - timedelta(days=30),
                standard=500,
                rambolito=80,
                rambolito_double=160,
            )
            record_prize_rule(
                session,
                root,
                effective_from=draw.scheduled_at + timedelta(minutes=1),
                standard=999,
                rambolito=99,
                rambolito_double=199,
            )
            old_id = old.id
        ticket_id = self.sell(self.draw_id, self.users.agent, [("455", "standard", 2)])
        self.close_and_publish(self.draw_id, "455")

        report = SettlementEngine(self.Session, max_workers=1).settle(self.draw_id)

        self.assertEqual(report.rule_id, old_id)
        ticket = self._ticket(ticket_id)
        self.assertEqual(ticket.prize_amount, Decimal("1000.00"))
        self.assertEqual(ticket.prize_rule_id, old_id)

    def test_transport_failure_does_not_affect_settlement(self):
        ticket_id = self.sell(self.draw_id, self.users.agent, [("455", "standard", 1)])
        self.close_and_publish(self.draw_id, "455")
        dispatcher = NotificationDispatcher(self.Session, [ExplodingTransport()])

        with self.assertLogs("drawsettle.notifications.dispatcher", level="WARNING"):
            report = SettlementEngine(self.Session, dispatcher, max_workers=1).settle(
                self.draw_id
            )

        self.assertTrue(report.settled)
        self.assertEqual(self._ticket(ticket_id).status, TicketStatus.WON)
        self.assertEqual(self._notification_count(), 3)

    def test_refused_notification_does_not_abort_settlement(self):
        first = self.sell(self.draw_id, self.users.agent, [("455", "standard", 1)])
        second = self.sell(self.draw_id, self.users.lone_agent, [("455", "standard", 2)])
        self.close_and_publish(self.draw_id, "455")
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        dispatcher = NotificationDispatcher(self.Session, executor=executor)

        with self.assertLogs("drawsettle.notifications.dispatcher", level="ERROR"):
            report = SettlementEngine(self.Session, dispatcher, max_workers=1).settle(
                self.draw_id
            )

        self.assertTrue(report.settled)
        self.assertEqual(report.won, 2)
        self.assertEqual(self._ticket(first).status, TicketStatus.WON)
        self.assertEqual(self._ticket(second).status, TicketStatus.WON)
        self.assertEqual(self._draw().status, DrawStatus.SETTLED)

    def test_finishing_unknown_draw_raises_not_found(self):
        engine = SettlementEngine(self.Session, max_workers=1)
        with self.assertRaises(NotFoundError):
            engine._mark_draw_settled(987654)

    def test_max_workers_must_be_positive(self):
        with self.assertRaises(ValueError):
            SettlementEngine(self.Session, max_workers=0)


class ParallelSettlementTests(FileDBTestCase):
    def setUp(self):
        super().setUp()
        self.users = self.seed_users()
        self.draw_id = self.open_draw()
        self.ticket_ids = []
        for i in range(24):
            combination = "455" if i % 3 == 0 else f"{i:03d}"
            self.ticket_ids.append(
                self.sell(self.draw_id, self.users.lone_agent, [(combination, "standard", 1)])
            )
        self.close_and_publish(self.draw_id, "455")

    def test_thread_pool_settles_every_ticket_once(self):
        recorder = RecordingDispatcher()
        report = SettlementEngine(self.Session, recorder, max_workers=4).settle(self.draw_id)

        self.assertTrue(report.settled)
        self.assertEqual(report.processed, 24)
        self.assertEqual(report.won, 8)
        self.assertEqual(report.no_win, 16)
        self.assertEqual(report.total_prize, Decimal("3600.00"))
        self.assertEqual(len(recorder.events), 8)

    def test_concurrent_engines_do_not_double_settle(self):
        transport = InMemoryTransport()
        dispatcher = NotificationDispatcher(self.Session, [transport])
        reports = []
        errors = []
        barrier = threading.Barrier(2)

        def run():
            try:
                barrier.wait()
                engine = SettlementEngine(self.Session, dispatcher, max_workers=2)
                reports.append(engine.settle(self.draw_id))
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(sum(r.processed for r in reports), 24)
        self.assertEqual(sum(r.won for r in reports), 8)
        with self.Session() as session:
            self.assertEqual(session.get(Draw, self.draw_id).status, DrawStatus.SETTLED)
            self.assertEqual(
                session.scalar(select(func.count(Notification.id))), 8
            )
        self.assertEqual(len(transport), 8)


if __name__ == "__main__":
    unittest.main()
