# Database models
from .base import Base
from .user import User
from .project import Project
from .order import Order, OrderStatus, PaymentProviderName
from .leaderboard_band import LeaderboardBand

__all__ = [
    "Base",
    "User",
    "Project",
    "Order",
    "OrderStatus",
    "PaymentProviderName",
    "LeaderboardBand",
]
