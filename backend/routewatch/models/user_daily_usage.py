"""
Per-user, per-UTC-day poll counter. Incremented by a guarded UPDATE in the same transaction that
inserts the poll record, so it always equals the user's poll record count for that day.
"""
from sqlalchemy import Column, Date, Integer, String, UniqueConstraint

from routewatch.db.base import Base


class UserDailyUsage(Base):
    __tablename__ = "user_daily_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    usage_date = Column(Date, nullable=False)
    used = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("user_id", "usage_date", name="uq_user_daily_usage_user_date"),)
