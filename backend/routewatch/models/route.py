"""Monitored origin/destination pair owned by a user. Windows and sessions cascade with it."""
import enum

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from routewatch.db.base import Base


class RouteStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class Route(Base):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    origin_address = Column(String(500), nullable=False, default="")
    origin_coordinates = Column(String(64), nullable=False)  # "lat,lon"
    destination_address = Column(String(500), nullable=False, default="")
    destination_coordinates = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False, default="google_maps")
    monitoring_status = Column(String(16), nullable=False, default=RouteStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    windows = relationship(
        "MonitoringWindow", back_populates="route", cascade="all, delete-orphan", passive_deletes=True
    )
    sessions = relationship(
        "MonitoringSession", back_populates="route", cascade="all, delete-orphan", passive_deletes=True
    )
