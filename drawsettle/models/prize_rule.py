"""Versioned prize multipliers."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import as_utc
from .base import ID_TYPE, Base

MULTIPLIER = Numeric(10, 2)


class PrizeRule(Base):
    """Multipliers in force from ``effective_from`` onwards.

    Rows are never edited. Administrators record a new row to change payouts,
    so any historical settlement can be reproduced from the row it used.
    """

    __tablename__ = "prize_rules"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    """First draw instant this rule applies to."""

    standard_multiplier: Mapped[Decimal] = mapped_column(MULTIPLIER, nullable=False)
    """Payout per peso for an exact-order match."""

    rambolito_multiplier: Mapped[Decimal] = mapped_column(MULTIPLIER, nullable=False)
    """Payout per peso for a rambolito bet with three distinct digits."""

    rambolito_double_multiplier: Mapped[Decimal] = mapped_column(
        MULTIPLIER, nullable=False
    )
    """Payout per peso for a rambolito bet containing a repeated digit."""

    created_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "standard_multiplier >= 0 AND rambolito_multiplier >= 0 "
            "AND rambolito_double_multiplier >= 0",
            name="multipliers_non_negative",
        ),
    )

    def __init__(
        self,
        *,
        effective_from: datetime,
        standard_multiplier: Decimal | int | str,
        rambolito_multiplier: Decimal | int | str,
        rambolito_double_multiplier: Decimal | int | str,
        created_by_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.effective_from = as_utc(effective_from)
        self.standard_multiplier = Decimal(str(standard_multiplier))
        self.rambolito_multiplier = Decimal(str(rambolito_multiplier))
        self.rambolito_double_multiplier = Decimal(str(rambolito_double_multiplier))
        self.created_by_id = created_by_id
        self.notes = notes

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            "<PrizeRule(id={id}, effective_from={eff}, standard={std}, "
            "rambolito={ram}, double={dbl})>"
        ).format(
            id=self.id,
            eff=self.effective_from,
            std=self.standard_multiplier,
            ram=self.rambolito_multiplier,
            dbl=self.rambolito_double_multiplier,
        )

    @classmethod
    def effective_at(cls, session: Session, when: datetime) -> Optional["PrizeRule"]:
        """Return the newest rule whose ``effective_from`` is not after ``when``."""

        stmt = (
            select(cls)
            .where(cls.effective_from <= as_utc(when))
            .order_by(cls.effective_from.desc(), cls.id.desc())
        )
        return session.scalars(stmt).first()
