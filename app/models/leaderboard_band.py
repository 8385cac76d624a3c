"""
One row per Hall of Fame band.

The row is the lock target for position allocation: allocators take
SELECT ... FOR UPDATE on it, so concurrent payments in the same band serialize.
"""
from sqlalchemy import Column, Integer, String

from .base import Base


class LeaderboardBand(Base):
    __tablename__ = "leaderboard_bands"

    name = Column(String(50), primary_key=True)
    first_position = Column(Integer, nullable=False)
    last_position = Column(Integer, nullable=False)
