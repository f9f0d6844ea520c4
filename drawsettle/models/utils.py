"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

TICKET_ALPHABET = string.digits + string.ascii_uppercase


def generate_ticket_number(
    draw_date: date,
    session: Optional[Session] = None,
    length: int = 9,
    max_attempts: int = 32,
) -> str:
    """Return a unique printable ticket number such as ``20250925-7K3Q9X1ZB``.

    When a session is provided, the helper retries if the generated value is
    already present (or pending) in ``Ticket.ticket_number``.
    """

    from .ticket import Ticket

    prefix = draw_date.strftime("%Y%m%d")
    attempts = 0
    while attempts < max_attempts:
        suffix = "".join(secrets.choice(TICKET_ALPHABET) for _ in range(length))
        candidate = f"{prefix}-{suffix}"

        if session is not None:
            collision = any(
                isinstance(obj, Ticket) and obj.ticket_number == candidate
                for obj in session.new
            )
            if not collision:
                collision = (
                    session.scalar(
                        select(Ticket.id).where(Ticket.ticket_number == candidate)
                    )
                    is not None
                )
            if collision:
                attempts += 1
                continue

        return candidate

    raise RuntimeError("Unable to generate a unique ticket number after multiple attempts")
