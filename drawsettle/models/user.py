from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import ID_TYPE, Base


class Role:
    """Roles recognised by the engine, highest authority first."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    AREA_COORDINATOR = "area_coordinator"
    COORDINATOR = "coordinator"
    AGENT = "agent"

    ALL = (SUPERADMIN, ADMIN, AREA_COORDINATOR, COORDINATOR, AGENT)
    CLAIM_DECIDERS = (SUPERADMIN, ADMIN)


class User(Base):
    """Account participating in the sales hierarchy.

    Agents report to a coordinator, and coordinators may report to an area
    coordinator. The chain is stored as ``upline_id`` on each row.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.AGENT)
    upline_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    upline: Mapped[Optional["User"]] = relationship(
        "User", remote_side="User.id", back_populates="downline"
    )
    downline: Mapped[list["User"]] = relationship("User", back_populates="upline")

    __table_args__ = (
        CheckConstraint(
            "role IN ('superadmin','admin','area_coordinator','coordinator','agent')",
            name="role_enum",
        ),
    )

    def __init__(
        self,
        username: str,
        role: str = Role.AGENT,
        full_name: Optional[str] = None,
        upline: Optional["User"] = None,
        upline_id: Optional[int] = None,
    ):
        self.username = username
        self.role = role
        self.full_name = full_name
        if upline is not None:
            self.upline = upline
        if upline_id is not None:
            self.upline_id = upline_id

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"

    @validates("role")
    def _validate_role(self, _key: str, value: str) -> str:
        if value not in Role.ALL:
            raise ValueError(f"Unknown role '{value}'")
        return value

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    @classmethod
    def get_by_username(cls, session: Session, username: str) -> Optional["User"]:
        """Get a user by their unique username."""
        return session.scalar(select(cls).where(cls.username == username))
