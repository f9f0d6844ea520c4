from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    select,
    update,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import dt_iso
from .base import ID_TYPE, Base


class NotificationType:
    WIN = "win"
    CLAIM_APPROVED = "claim_approved"
    CLAIM_REJECTED = "claim_rejected"
    INFO = "info"

    ALL = (WIN, CLAIM_APPROVED, CLAIM_REJECTED, INFO)


class Notification(Base):
    """Durable per-recipient message. Only the read flag ever changes."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    recipient_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ticket_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    draw_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="SET NULL"), nullable=True
    )
    claim_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("claims.id", ondelete="SET NULL"), nullable=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('win','claim_approved','claim_rejected','info')", name="type_enum"
        ),
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, recipient_id={self.recipient_id}, "
            f"type='{self.type}', is_read={self.is_read})>"
        )

    def to_json(self) -> dict:
        """Serialize for transports and the read model."""
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "ticket_id": self.ticket_id,
            "draw_id": self.draw_id,
            "claim_id": self.claim_id,
            "payload": self.payload,
            "is_read": self.is_read,
            "read_at": dt_iso(self.read_at),
            "created_at": dt_iso(self.created_at),
        }

    @classmethod
    def for_recipient(
        cls,
        session: Session,
        recipient_id: int,
        *,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> list["Notification"]:
        """Return the recipient's notifications, newest first."""
        stmt = select(cls).where(cls.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(cls.is_read.is_(False))
        stmt = stmt.order_by(cls.created_at.desc(), cls.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))

    @classmethod
    def unread_count(cls, session: Session, recipient_id: int) -> int:
        stmt = select(func.count(cls.id)).where(
            cls.recipient_id == recipient_id, cls.is_read.is_(False)
        )
        return int(session.scalar(stmt) or 0)

    @classmethod
    def mark_read(cls, session: Session, notification_id: int, recipient_id: int) -> bool:
        """Flag one notification as read. Returns ``False`` if it was not found
        for this recipient or was already read."""
        result = session.execute(
            update(cls)
            .where(
                cls.id == notification_id,
                cls.recipient_id == recipient_id,
                cls.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    @classmethod
    def mark_all_read(cls, session: Session, recipient_id: int) -> int:
        """Flag every unread notification of the recipient; return how many changed."""
        result = session.execute(
            update(cls)
            .where(cls.recipient_id == recipient_id, cls.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
