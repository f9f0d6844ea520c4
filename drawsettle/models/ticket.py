"""Ticket, bet and reprint models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .claim import Claim
    from .draw import Draw
    from .prize_rule import PrizeRule
    from .user import User


MONEY = Numeric(12, 2)


class TicketStatus:
    """Values stored in ``Ticket.status``.

    ``rejected`` is deliberately absent: a rejected claim returns the ticket
    to ``won`` and lives on in the claim history.
    """

    ACTIVE = "active"
    WON = "won"
    NO_WIN = "no_win"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"

    ALL = (ACTIVE, WON, NO_WIN, PENDING_APPROVAL, APPROVED)
    TERMINAL = (NO_WIN, APPROVED)


class BetType:
    STANDARD = "standard"
    RAMBOLITO = "rambolito"

    ALL = (STANDARD, RAMBOLITO)


class Ticket(Base):
    """A sold ticket: one agent, one draw, one or more bets."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    """Human-facing identifier printed on the physical ticket."""

    agent_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    """Owning agent."""

    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    """Draw the ticket was sold for."""

    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Sum of all bet amounts."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.ACTIVE
    )
    """Lifecycle status, see :class:`TicketStatus`."""

    reprint_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Number of reprints issued after the original print."""

    prize_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    """Prize computed at settlement. A cache; recompute from bets for audits."""

    prize_rule_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("prize_rules.id", ondelete="SET NULL"), nullable=True
    )
    """Prize rule version applied at settlement, ``None`` for built-in defaults."""

    approved_prize: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    """Payable amount fixed by an approved claim."""

    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    agent: Mapped["User"] = relationship("User")
    draw: Mapped["Draw"] = relationship(back_populates="tickets")
    prize_rule: Mapped[Optional["PrizeRule"]] = relationship("PrizeRule")
    bets: Mapped[list["Bet"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Bet.position",
    )
    claims: Mapped[list["Claim"]] = relationship(
        back_populates="ticket", order_by="Claim.id"
    )
    reprints: Mapped[list["TicketReprint"]] = relationship(
        back_populates="ticket", order_by="TicketReprint.reprint_number"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','won','no_win','pending_approval','approved')",
            name="status_enum",
        ),
        CheckConstraint("reprint_count >= 0", name="reprint_count_non_negative"),
        Index("ix_tickets_draw_status", "draw_id", "status"),
    )

    def __init__(
        self,
        ticket_number: str,
        agent_id: int,
        draw_id: int,
        bets: Optional[list["Bet"]] = None,
        status: str = TicketStatus.ACTIVE,
        reprint_count: int = 0,
    ):
        self.ticket_number = ticket_number
        self.agent_id = agent_id
        self.draw_id = draw_id
        self.status = status
        self.reprint_count = reprint_count
        self.bets = list(bets or [])
        for position, bet in enumerate(self.bets):
            bet.position = position
        self.total_amount = sum((bet.amount for bet in self.bets), Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<Ticket(id={self.id}, ticket_number='{self.ticket_number}', "
            f"draw_id={self.draw_id}, status='{self.status}')>"
        )

    @classmethod
    def get_by_number(cls, session: Session, ticket_number: str) -> Optional["Ticket"]:
        """Look up a ticket by its printed number."""
        return session.scalar(select(cls).where(cls.ticket_number == ticket_number))

    @classmethod
    def ids_for_draw(
        cls, session: Session, draw_id: int, status: Optional[str] = None
    ) -> list[int]:
        """Return ticket ids for ``draw_id`` in ascending order, optionally by status."""
        stmt = select(cls.id).where(cls.draw_id == draw_id)
        if status is not None:
            stmt = stmt.where(cls.status == status)
        return list(session.scalars(stmt.order_by(cls.id)))


class Bet(Base):
    """A single 3-digit wager on a ticket."""

    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    combination: Mapped[str] = mapped_column(String(3), nullable=False)
    bet_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="bets")

    __table_args__ = (
        CheckConstraint("bet_type IN ('standard','rambolito')", name="bet_type_enum"),
        CheckConstraint("amount > 0", name="amount_positive"),
        UniqueConstraint("ticket_id", "position", name="uq_bet_ticket_position"),
    )

    def __init__(self, combination: str, bet_type: str, amount: Decimal | int | str):
        self.combination = combination
        self.bet_type = bet_type
        self.amount = Decimal(str(amount))

    def __repr__(self) -> str:
        return (
            f"<Bet(id={self.id}, combination='{self.combination}', "
            f"bet_type='{self.bet_type}', amount={self.amount})>"
        )


class TicketReprint(Base):
    """Append-only log of physical reprints."""

    __tablename__ = "ticket_reprints"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reprinted_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reprint_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="reprints")

    __table_args__ = (
        UniqueConstraint("ticket_id", "reprint_number", name="uq_ticket_reprint_number"),
    )
