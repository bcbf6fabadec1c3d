"""smartdrive - Async Python client for SmartDrive live vehicle telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("smartdrive-live")
except PackageNotFoundError:
    __version__ = "0+local"

from smartdrive.client import SmartDriveClient
from smartdrive.config import SmartDriveConfig
from smartdrive.connection import ConnectionManager, ConnectionState, OutboundQueue
from smartdrive.crash import CrashEscalationSequencer
from smartdrive.dispatcher import MessageDispatcher
from smartdrive.exceptions import (
    ChannelError,
    InvalidStateError,
    PersistenceError,
    ProtocolError,
    SessionExpiredError,
    SmartDriveConfigError,
    SmartDriveError,
    TelemetryValidationError,
)
from smartdrive.geo import haversine_km
from smartdrive.gps_health import GPSHealthMonitor
from smartdrive.models import (
    ActiveTripInfo,
    Envelope,
    GpsHealthStatus,
    MessageType,
    TripSummary,
    WarningType,
    Waypoint,
)
from smartdrive.notifications import Notification, NotificationLevel
from smartdrive.persistence import HttpPersistenceClient, IncidentType, Persistence
from smartdrive.session import OperatorSession
from smartdrive.state import LiveState
from smartdrive.trip import TripSessionTracker

__all__ = [
    "__version__",
    "ActiveTripInfo",
    "ChannelError",
    "ConnectionManager",
    "ConnectionState",
    "CrashEscalationSequencer",
    "Envelope",
    "GPSHealthMonitor",
    "GpsHealthStatus",
    "HttpPersistenceClient",
    "IncidentType",
    "InvalidStateError",
    "LiveState",
    "MessageDispatcher",
    "MessageType",
    "Notification",
    "NotificationLevel",
    "OperatorSession",
    "OutboundQueue",
    "Persistence",
    "PersistenceError",
    "ProtocolError",
    "SessionExpiredError",
    "SmartDriveClient",
    "SmartDriveConfig",
    "SmartDriveConfigError",
    "SmartDriveError",
    "TelemetryValidationError",
    "TripSessionTracker",
    "TripSummary",
    "WarningType",
    "Waypoint",
    "haversine_km",
]
