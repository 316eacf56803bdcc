from routewatch.db.base import Base
from routewatch.db.session import SessionLocal, engine, get_db
from routewatch.db.tables import ALL_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "ALL_TABLE_NAMES"]
