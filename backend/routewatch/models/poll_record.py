"""One successful provider response for a session. Immutable except soft-delete and payload scrub."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from routewatch.db.base import Base


class PollRecord(Base):
    __tablename__ = "poll_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(
        Integer, ForeignKey("monitoring_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    polled_at = Column(DateTime(timezone=True), nullable=False, index=True)  # UTC
    travel_duration_seconds = Column(Integer, nullable=False)
    distance_metres = Column(Integer, nullable=False)
    provider = Column(String(32), nullable=False)
    is_rerouted = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    raw_provider_response = Column(Text, nullable=True)  # cleared by retention pruning

    session = relationship("MonitoringSession", back_populates="poll_records")
