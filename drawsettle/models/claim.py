"""Claim requests and their append-only decision trail."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base
from .ticket import MONEY

if TYPE_CHECKING:
    from .ticket import Ticket
    from .user import User


class ClaimStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL = (PENDING, APPROVED, REJECTED)
    DECISIONS = (APPROVED, REJECTED)


class Claim(Base):
    """An agent's request to have a winning ticket paid out."""

    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    agent_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.PENDING
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decided_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="claims")
    agent: Mapped["User"] = relationship("User", foreign_keys=[agent_id])
    records: Mapped[list["ClaimRecord"]] = relationship(
        back_populates="claim", order_by="ClaimRecord.id"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected')", name="status_enum"
        ),
        Index("ix_claims_status", "status"),
    )

    def __init__(self, ticket_id: int, agent_id: int, status: str = ClaimStatus.PENDING):
        self.ticket_id = ticket_id
        self.agent_id = agent_id
        self.status = status

    def __repr__(self) -> str:
        return (
            f"<Claim(id={self.id}, ticket_id={self.ticket_id}, "
            f"agent_id={self.agent_id}, status='{self.status}')>"
        )

    @classmethod
    def pending(cls, session: Session) -> list["Claim"]:
        """Return claims awaiting a decision, oldest first."""
        stmt = (
            select(cls)
            .where(cls.status == ClaimStatus.PENDING)
            .order_by(cls.submitted_at, cls.id)
        )
        return list(session.scalars(stmt))


class ClaimRecord(Base):
    """Append-only audit row written once per claim decision."""

    __tablename__ = "claim_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    claim_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("claims.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    """One record per claim; the unique key backs the single-decision rule."""

    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    decided_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prize_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Amount payable as a result of the decision (zero when rejected)."""

    computed_prize: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Prize recomputed from the bets at decision time."""

    override_prize: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    """Administrator override, when one was supplied."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    claim: Mapped["Claim"] = relationship(back_populates="records")

    __table_args__ = (
        CheckConstraint("action IN ('approved','rejected')", name="action_enum"),
    )

    def __init__(
        self,
        *,
        claim_id: int,
        ticket_id: int,
        action: str,
        decided_by_id: Optional[int],
        prize_amount: Decimal,
        computed_prize: Decimal,
        override_prize: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.claim_id = claim_id
        self.ticket_id = ticket_id
        self.action = action
        self.decided_by_id = decided_by_id
        self.prize_amount = prize_amount
        self.computed_prize = computed_prize
        self.override_prize = override_prize
        self.notes = notes

    def __repr__(self) -> str:
        return (
            f"<ClaimRecord(id={self.id}, claim_id={self.claim_id}, "
            f"action='{self.action}', prize_amount={self.prize_amount})>"
        )

    @classmethod
    def history_for_ticket(cls, session: Session, ticket_id: int) -> list["ClaimRecord"]:
        """Return every decision taken on ``ticket_id`` in chronological order."""
        stmt = select(cls).where(cls.ticket_id == ticket_id).order_by(cls.id)
        return list(session.scalars(stmt))
