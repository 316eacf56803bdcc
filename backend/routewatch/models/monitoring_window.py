"""Recurring daily time range (local wall clock, no overnight wrap) + weekday mask for a route."""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Time
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from routewatch.db.base import Base


class MonitoringWindow(Base):
    __tablename__ = "monitoring_windows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    days_of_week_mask = Column(Integer, nullable=False)  # bit 0 = Monday .. bit 6 = Sunday, see Weekdays
    is_active = Column(Boolean, nullable=False, default=True)
    exclude_holidays = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    route = relationship("Route", back_populates="windows")

    __table_args__ = (CheckConstraint("start_time < end_time", name="ck_monitoring_windows_start_before_end"),)
