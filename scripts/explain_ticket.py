"""Print how a ticket was settled: ``python scripts/explain_ticket.py <number>``."""

from __future__ import annotations

import argparse
import json
import sys

from drawsettle.db.engine import get_sessionmaker, make_engine
from drawsettle.errors import NotFoundError
from drawsettle.models import Ticket
from drawsettle.settlement import explain_ticket


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("ticket", help="ticket number, or numeric id with --id")
    parser.add_argument("--id", action="store_true", help="treat TICKET as a ticket id")
    parser.add_argument("--json", action="store_true", help="print JSON instead of text")
    args = parser.parse_args(argv)

    Session = get_sessionmaker(make_engine())
    with Session() as session:
        if args.id:
            ticket_id = int(args.ticket)
        else:
            ticket = Ticket.get_by_number(session, args.ticket)
            if ticket is None:
                print(f"No ticket numbered {args.ticket}", file=sys.stderr)
                return 1
            ticket_id = ticket.id
        try:
            explanation = explain_ticket(session, ticket_id)
        except NotFoundError as exc:
            print(exc, file=sys.stderr)
            return 1

    if args.json:
        print(json.dumps(explanation.to_json(), indent=2))
    else:
        print(explanation.format())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
