"""One row per (route, session_date): that day's monitoring activity. Owns the day's poll records."""
import enum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from routewatch.db.base import Base


class SessionState(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class MonitoringSession(Base):
    __tablename__ = "monitoring_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True)
    session_date = Column(Date, nullable=False)
    state = Column(String(16), nullable=False, default=SessionState.PENDING.value)
    first_poll_at = Column(DateTime(timezone=True), nullable=True)
    last_poll_at = Column(DateTime(timezone=True), nullable=True)
    # Paces the next try after a failed provider call; reset on success
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    quota_consumed = Column(Integer, nullable=False, default=0)
    poll_count = Column(Integer, nullable=False, default=0)
    is_holiday_excluded = Column(Boolean, nullable=False, default=False)

    route = relationship("Route", back_populates="sessions")
    poll_records = relationship(
        "PollRecord", back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    # Get-or-create races resolve against this constraint
    __table_args__ = (UniqueConstraint("route_id", "session_date", name="uq_monitoring_sessions_route_date"),)
