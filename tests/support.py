"""Shared fixtures for the test suite."""

from __future__ import annotations

import os
import tempfile
import unittest
from datetime import date
from types import SimpleNamespace
from typing import Iterable, Optional

from drawsettle.db.engine import get_sessionmaker, make_engine
from drawsettle.models import Base, DrawSlot, Role, User
from drawsettle.workflows import close_draw, issue_ticket, open_draw, publish_result

# Far enough ahead that the betting cutoff never passes during a test run.
DRAW_DATE = date(2099, 1, 5)


class DBTestCase(unittest.TestCase):
    """Fresh in-memory database per test.

    In-memory SQLite keeps a single connection per thread, so tests must not
    hold a session open while calling a component that opens its own.
    """

    def setUp(self) -> None:
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    def seed_users(self) -> SimpleNamespace:
        """Create superadmin, admin, an agent chain and a lone agent; return ids."""
        with self.Session.begin() as session:
            superadmin = User("root", role=Role.SUPERADMIN)
            admin = User("admin", role=Role.ADMIN)
            area = User("area", role=Role.AREA_COORDINATOR)
            coordinator = User("coord", role=Role.COORDINATOR, upline=area)
            agent = User("agent", role=Role.AGENT, full_name="Agent Smith", upline=coordinator)
            other_agent = User("agent2", role=Role.AGENT, upline=coordinator)
            lone_agent = User("lone", role=Role.AGENT)
            session.add_all(
                [superadmin, admin, area, coordinator, agent, other_agent, lone_agent]
            )
            session.flush()
            return SimpleNamespace(
                superadmin=superadmin.id,
                admin=admin.id,
                area=area.id,
                coordinator=coordinator.id,
                agent=agent.id,
                other_agent=other_agent.id,
                lone_agent=lone_agent.id,
            )

    def open_draw(self, slot: str = DrawSlot.TWO_PM, draw_date: date = DRAW_DATE) -> int:
        with self.Session.begin() as session:
            return open_draw(session, draw_date, slot).id

    def sell(self, draw_id: int, agent_id: int, bets: Iterable[tuple]) -> int:
        from drawsettle.models import Draw

        with self.Session.begin() as session:
            draw = session.get(Draw, draw_id)
            agent = session.get(User, agent_id)
            return issue_ticket(session, agent, draw, list(bets)).id

    def close(self, draw_id: int) -> None:
        from drawsettle.models import Draw

        with self.Session.begin() as session:
            close_draw(session, session.get(Draw, draw_id))

    def close_and_publish(
        self,
        draw_id: int,
        winning_number: str,
        *,
        settle: bool = False,
        dispatcher=None,
        publisher_id: Optional[int] = None,
    ):
        self.close(draw_id)
        return publish_result(
            self.Session,
            draw_id,
            winning_number,
            published_by_id=publisher_id,
            dispatcher=dispatcher,
            max_workers=1,
            settle=settle,
        )


class FileDBTestCase(DBTestCase):
    """Temporary on-disk database, for tests that write from several threads."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmpdir.name, "test.db")
        self.engine = make_engine(f"sqlite:///{path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self._tmpdir.cleanup()
