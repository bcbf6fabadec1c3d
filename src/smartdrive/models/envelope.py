"""Inbound envelope and payload models.

Every message on the channel is a JSON object ``{type, data?, timestamp?}``.
:func:`parse_envelope` is the protocol boundary: anything that is not a
structured object with a non-empty ``type`` raises
:class:`~smartdrive.exceptions.ProtocolError`.  Payload models coerce the
device's loosely typed numbers with the normalize helpers.
"""

from __future__ import annotations

import enum
import json
import math
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

from smartdrive.exceptions import ProtocolError
from smartdrive.ingestion.normalize import safe_float, safe_int, safe_str


class MessageType(enum.StrEnum):
    """Recognized inbound ``type`` values."""

    LIVE_DATA = "live_data"
    WARNING = "warning"
    CRASH = "crash"
    VIDEO_FRAME = "video_frame"
    DETECTION_DATA = "detection_data"
    LANE_WARNING = "lane_warning"
    TRIP_STARTED = "trip_started"
    TRIP_STOPPED = "trip_stopped"
    CAMERA_STATUS = "camera_status"
    ERROR = "error"
    PONG = "pong"


class WarningType(enum.StrEnum):
    """Safety event kinds reported by the device."""

    HARD_BRAKE = "HARD_BRAKE"
    RAPID_ACCEL = "RAPID_ACCEL"
    CRASH = "CRASH"
    IMPACT = "IMPACT"


class Envelope(BaseModel):
    """Validated inbound envelope.

    ``data`` is left untyped here; handlers validate it against the
    payload model for their ``type``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    data: Any = None
    timestamp: float | None = None
    message: str | None = None
    """Top-level ``message`` sent by the bridge on ``error`` envelopes."""

    @field_validator("type", mode="before")
    @classmethod
    def _require_type(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("type must be a string")
        text = value.strip()
        if not text:
            raise ValueError("type must be non-empty")
        return text

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> str | None:
        return safe_str(value)

    @property
    def data_dict(self) -> dict[str, Any] | None:
        """``data`` when it is an object, else ``None``."""
        return self.data if isinstance(self.data, dict) else None


def parse_envelope(raw: str | bytes | bytearray | Mapping[str, Any]) -> Envelope:
    """Decode and validate a raw inbound frame."""
    obj: Any = raw
    if isinstance(obj, (bytes, bytearray)):
        try:
            obj = obj.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("Envelope is not valid UTF-8") from exc
    if isinstance(obj, str):
        try:
            obj = json.loads(obj)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Envelope is not JSON: {obj[:64]!r}") from exc
    if not isinstance(obj, Mapping):
        raise ProtocolError(f"Envelope is not an object: {type(obj).__name__}")
    try:
        return Envelope.model_validate(dict(obj))
    except ValidationError as exc:
        raise ProtocolError(f"Envelope rejected: {exc.errors()[0]['msg']}") from exc


# ------------------------------------------------------------------
# Payloads
# ------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class LiveDataPayload(_Payload):
    """Device measurements forwarded by the bridge."""

    speed: float | None = None
    gps_speed: float | None = None
    acceleration: float | None = None
    latitude: float | None = Field(default=None, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float | None = Field(default=None, validation_alias=AliasChoices("longitude", "lon", "lng"))
    timestamp: float | None = None
    safety_score: int | None = None
    lane_status: str | None = None

    @field_validator("speed", "gps_speed", "acceleration", "latitude", "longitude", "timestamp", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("safety_score", mode="before")
    @classmethod
    def _coerce_score(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("lane_status", mode="before")
    @classmethod
    def _coerce_lane_status(cls, value: Any) -> str | None:
        text = safe_str(value)
        return text.upper() if text is not None else None

    @property
    def effective_speed(self) -> float | None:
        """Wheel speed when present, GPS speed otherwise (km/h)."""
        return self.speed if self.speed is not None else self.gps_speed


class WarningPayload(_Payload):
    """Safety event from the device."""

    warning_type: str
    value: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    timestamp: float | None = None

    @field_validator("warning_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("warning_type is required")
        return text.upper()

    @field_validator("value", "latitude", "longitude", "timestamp", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


class CrashPayload(_Payload):
    """Crash detection from the device; coordinates are mandatory."""

    latitude: float
    longitude: float
    value: float | None = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _require_float(cls, value: Any) -> float:
        parsed = safe_float(value)
        if parsed is None:
            raise ValueError("coordinate must be a finite number")
        return parsed

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> float | None:
        return safe_float(value)


class LaneWarningPayload(_Payload):
    direction: str

    @field_validator("direction", mode="before")
    @classmethod
    def _require_direction(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("direction is required")
        return text


def coerce_trip_id(value: Any) -> int:
    """Parse a backend trip id, which must be a positive integer.

    Accepts JSON numbers and numeric strings (the bridge forwards the
    backend's string ids unchanged).  Booleans, fractions, zero, and
    negative values are rejected with :class:`ValueError`.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("trip_id is missing")
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise ValueError(f"trip_id is not numeric: {value!r}")
        parsed = int(text)
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and math.isfinite(value) and value.is_integer():
        parsed = int(value)
    else:
        raise ValueError(f"trip_id is not an integer: {value!r}")
    if parsed <= 0:
        raise ValueError(f"trip_id must be positive, got {parsed}")
    return parsed


class TripStartedPayload(_Payload):
    trip_id: int

    @field_validator("trip_id", mode="before")
    @classmethod
    def _validate_trip_id(cls, value: Any) -> int:
        return coerce_trip_id(value)


class TripStoppedPayload(_Payload):
    trip_id: int | None = None
    distance: float | None = None

    @field_validator("trip_id", mode="before")
    @classmethod
    def _coerce_trip_id(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("distance", mode="before")
    @classmethod
    def _coerce_distance(cls, value: Any) -> float | None:
        return safe_float(value)


class CameraStatusPayload(_Payload):
    enabled: StrictBool
