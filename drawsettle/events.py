"""Domain events emitted after a state transition commits."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class TicketWon:
    """A ticket moved ``active -> won`` during settlement."""

    ticket_id: int
    ticket_number: str
    draw_id: int
    agent_id: int
    winning_number: str
    prize: Decimal


@dataclass(frozen=True)
class ClaimDecided:
    """An administrator approved or rejected a claim."""

    claim_id: int
    ticket_id: int
    ticket_number: str
    draw_id: int
    agent_id: int
    action: str
    prize: Decimal
    notes: Optional[str] = None


Event = Union[TicketWon, ClaimDecided]

__all__ = ["ClaimDecided", "Event", "TicketWon"]
