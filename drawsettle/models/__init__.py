from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import Role, User  # noqa: F401
from .draw import Draw, DrawSlot, DrawStatus  # noqa: F401
from .prize_rule import PrizeRule  # noqa: F401
from .ticket import Bet, BetType, Ticket, TicketReprint, TicketStatus  # noqa: F401
from .claim import Claim, ClaimRecord, ClaimStatus  # noqa: F401
from .notification import Notification, NotificationType  # noqa: F401

__all__ = [
    "Base",
    "Role",
    "User",
    "Draw",
    "DrawSlot",
    "DrawStatus",
    "PrizeRule",
    "Bet",
    "BetType",
    "Ticket",
    "TicketReprint",
    "TicketStatus",
    "Claim",
    "ClaimRecord",
    "ClaimStatus",
    "Notification",
    "NotificationType",
]
