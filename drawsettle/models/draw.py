"""Draw model and its fixed daily time slots."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    inspect,
    select,
)
from sqlalchemy.orm import (
    Mapped,
    Session,
    mapped_column,
    object_session,
    relationship,
    validates,
)
from sqlalchemy.orm.base import NO_VALUE

from ..errors import ResultAlreadyPublished
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .ticket import Ticket
    from .user import User


# Philippine time has no DST, so a fixed offset is exact.
MANILA_TZ = timezone(timedelta(hours=8), "Asia/Manila")

BETTING_CUTOFF = timedelta(minutes=5)


class DrawSlot:
    """The three fixed daily draw times."""

    TWO_PM = "two_pm"
    FIVE_PM = "five_pm"
    NINE_PM = "nine_pm"

    ALL = (TWO_PM, FIVE_PM, NINE_PM)

    TIMES = {
        TWO_PM: time(14, 0),
        FIVE_PM: time(17, 0),
        NINE_PM: time(21, 0),
    }

    LABELS = {TWO_PM: "2PM", FIVE_PM: "5PM", NINE_PM: "9PM"}


class DrawStatus:
    SCHEDULED = "scheduled"
    OPEN = "open"
    CLOSED = "closed"
    SETTLED = "settled"

    ALL = (SCHEDULED, OPEN, CLOSED, SETTLED)


class Draw(Base):
    """A scheduled lottery event that ends with one 3-digit winning number."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    draw_date: Mapped[date] = mapped_column(Date, nullable=False)
    """Calendar date of the draw (Asia/Manila)."""

    slot: Mapped[str] = mapped_column(String(10), nullable=False)
    """One of :class:`DrawSlot`."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DrawStatus.SCHEDULED
    )
    """Lifecycle status, one of :class:`DrawStatus`."""

    winning_number: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    """Published winning number. Written once, never changed afterwards."""

    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    published_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="draw")
    published_by: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        UniqueConstraint("draw_date", "slot", name="uq_draw_date_slot"),
        CheckConstraint(
            "status IN ('scheduled','open','closed','settled')", name="status_enum"
        ),
        CheckConstraint("slot IN ('two_pm','five_pm','nine_pm')", name="slot_enum"),
    )

    def __init__(
        self,
        draw_date: date,
        slot: str,
        status: str = DrawStatus.SCHEDULED,
        winning_number: Optional[str] = None,
    ):
        if slot not in DrawSlot.ALL:
            raise ValueError(f"Unknown draw slot '{slot}'")
        self.draw_date = draw_date
        self.slot = slot
        self.status = status
        self.winning_number = winning_number

    def __repr__(self) -> str:
        return (
            f"<Draw(id={self.id}, draw_date={self.draw_date}, slot='{self.slot}', "
            f"status='{self.status}', winning_number={self.winning_number!r})>"
        )

    @validates("winning_number")
    def _freeze_winning_number(self, _key: str, value: Optional[str]) -> Optional[str]:
        current = self._stored_winning_number()
        if current is not None and value != current:
            raise ResultAlreadyPublished(
                f"Draw {self.id} already has winning number {current}"
            )
        return value

    def _stored_winning_number(self) -> Optional[str]:
        # An expired attribute is absent from the instance; ask the database.
        state = inspect(self)
        loaded = state.attrs.winning_number.loaded_value
        if loaded is not NO_VALUE:
            return loaded
        session = object_session(self)
        if session is None or state.identity is None:
            return None
        with session.no_autoflush:
            return session.scalar(
                select(Draw.winning_number).where(Draw.id == state.identity[0])
            )

    @property
    def scheduled_at(self) -> datetime:
        """Aware datetime of the draw in Manila time."""
        return datetime.combine(
            self.draw_date, DrawSlot.TIMES[self.slot], tzinfo=MANILA_TZ
        )

    @property
    def cutoff_at(self) -> datetime:
        """Last instant at which tickets may be sold for this draw."""
        return self.scheduled_at - BETTING_CUTOFF

    @property
    def label(self) -> str:
        return f"{self.draw_date.isoformat()} {DrawSlot.LABELS[self.slot]}"

    @classmethod
    def get_by_date_and_slot(
        cls, session: Session, draw_date: date, slot: str
    ) -> Optional["Draw"]:
        """Return the draw scheduled for ``draw_date`` at ``slot`` if it exists."""
        return session.scalar(
            select(cls).where(cls.draw_date == draw_date, cls.slot == slot)
        )
