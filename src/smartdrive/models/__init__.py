"""Data models for channel messages, trips, and GPS health."""

from smartdrive.models.commands import (
    OutboundMessage,
    PingMessage,
    ResetCameraCommand,
    StartTripCommand,
    StopTripCommand,
    ToggleCameraCommand,
)
from smartdrive.models.envelope import (
    CameraStatusPayload,
    CrashPayload,
    Envelope,
    LaneWarningPayload,
    LiveDataPayload,
    MessageType,
    TripStartedPayload,
    TripStoppedPayload,
    WarningPayload,
    WarningType,
    coerce_trip_id,
    parse_envelope,
)
from smartdrive.models.gps_health import GpsHealthRecord, GpsHealthStatus
from smartdrive.models.trip import ActiveTripInfo, TripSession, TripSummary, Waypoint

__all__ = [
    "ActiveTripInfo",
    "CameraStatusPayload",
    "CrashPayload",
    "Envelope",
    "GpsHealthRecord",
    "GpsHealthStatus",
    "LaneWarningPayload",
    "LiveDataPayload",
    "MessageType",
    "OutboundMessage",
    "PingMessage",
    "ResetCameraCommand",
    "StartTripCommand",
    "StopTripCommand",
    "ToggleCameraCommand",
    "TripSession",
    "TripStartedPayload",
    "TripStoppedPayload",
    "TripSummary",
    "WarningPayload",
    "WarningType",
    "Waypoint",
    "coerce_trip_id",
    "parse_envelope",
]
