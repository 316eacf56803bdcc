from routewatch.models.monitoring_session import MonitoringSession, SessionState
from routewatch.models.monitoring_window import MonitoringWindow
from routewatch.models.poll_record import PollRecord
from routewatch.models.route import Route, RouteStatus
from routewatch.models.triple_test import TripleTestSession, TripleTestShot
from routewatch.models.user_daily_usage import UserDailyUsage

__all__ = [
    "MonitoringSession",
    "MonitoringWindow",
    "PollRecord",
    "Route",
    "RouteStatus",
    "SessionState",
    "TripleTestSession",
    "TripleTestShot",
    "UserDailyUsage",
]
