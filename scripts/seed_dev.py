from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from drawsettle.db.engine import get_sessionmaker, make_engine
from drawsettle.logging_config import configure_logging
from drawsettle.models import Base, DrawSlot, Role, Ticket, User
from drawsettle.models.draw import MANILA_TZ
from drawsettle.notifications import LoggingTransport, NotificationDispatcher
from drawsettle.workflows import (
    close_draw,
    issue_ticket,
    open_draw,
    publish_result,
    record_prize_rule,
)


def main() -> None:
    """Seed the development database with a hierarchy, two draws and tickets."""
    configure_logging()
    engine = make_engine()

    # SQLite refuses to drop the self-referencing users table with FKs on.
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    today = datetime.now(MANILA_TZ).date()
    yesterday = today - timedelta(days=1)
    tomorrow = today + timedelta(days=1)

    with Session.begin() as session:
        superadmin = User("root", role=Role.SUPERADMIN, full_name="System Owner")
        admin = User("admin", role=Role.ADMIN, full_name="Claims Desk")
        area = User("area_north", role=Role.AREA_COORDINATOR, full_name="Area North")
        coordinator = User(
            "coord_01", role=Role.COORDINATOR, full_name="Coordinator One", upline=area
        )
        alice = User("agent_alice", role=Role.AGENT, full_name="Alice", upline=coordinator)
        bob = User("agent_bob", role=Role.AGENT, full_name="Bob", upline=coordinator)
        session.add_all([superadmin, admin, area, coordinator, alice, bob])
        session.flush()

        record_prize_rule(
            session,
            superadmin,
            effective_from=datetime(2020, 1, 1, tzinfo=timezone.utc),
            standard=450,
            rambolito=75,
            rambolito_double=150,
            notes="Launch payouts",
        )

        # Yesterday's 9PM draw gets settled below so notifications exist.
        past = open_draw(session, yesterday, DrawSlot.NINE_PM)
        sale_time = past.scheduled_at - timedelta(hours=2)
        issue_ticket(session, alice, past, [("455", "standard", 10)], now=sale_time)
        issue_ticket(
            session,
            alice,
            past,
            [("554", "rambolito", 20), ("123", "standard", 5)],
            now=sale_time,
        )
        issue_ticket(session, bob, past, [("677", "rambolito", 10)], now=sale_time)
        close_draw(session, past)
        past_id = past.id

        upcoming = open_draw(session, tomorrow, DrawSlot.TWO_PM)
        issue_ticket(session, bob, upcoming, [("901", "standard", 50)])

    dispatcher = NotificationDispatcher(Session, [LoggingTransport()])
    report = publish_result(
        Session, past_id, "455", published_by_id=admin.id, dispatcher=dispatcher
    )

    with Session() as session:
        tickets = list(session.scalars(select(Ticket).order_by(Ticket.id)))

    print("Seed complete.")
    print(
        f"Draw {past_id}: {report.won} won, {report.no_win} lost, "
        f"prizes {report.total_prize}"
    )
    for ticket in tickets:
        print(f"  {ticket.ticket_number} {ticket.status} prize={ticket.prize_amount}")


if __name__ == "__main__":
    main()
