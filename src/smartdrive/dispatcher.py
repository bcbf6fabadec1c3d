"""Inbound message routing.

Owns:
- decoding raw channel text into an :class:`~smartdrive.models.Envelope`
- routing each envelope ``type`` to exactly one handler
- translating handler errors into logs or user notifications

:meth:`MessageDispatcher.handle` never raises; one bad message must not
stop the stream.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from smartdrive._redact import summarize_inbound
from smartdrive.crash import CrashEscalationSequencer
from smartdrive.exceptions import ProtocolError, TelemetryValidationError
from smartdrive.gps_health import GPSHealthMonitor
from smartdrive.ingestion.normalize import is_valid_coordinate, safe_str
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
    parse_envelope,
)
from smartdrive.notifications import NotificationLevel, Notifier, emit
from smartdrive.state.live import LiveState
from smartdrive.state.pending import PendingCommands, PendingKind
from smartdrive.trip import TripSessionTracker

_logger = logging.getLogger(__name__)

_COUNTED_WARNINGS = {
    WarningType.HARD_BRAKE: "hard_brake_count",
    WarningType.RAPID_ACCEL: "rapid_accel_count",
}
_CRASH_WARNINGS = frozenset({WarningType.CRASH, WarningType.IMPACT})


def _validate(model: type[BaseModel], envelope: Envelope) -> Any:
    try:
        return model.model_validate(envelope.data_dict or {})
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid {envelope.type} payload: {exc.errors()[0].get('msg', exc)}",
            message_type=envelope.type,
        ) from exc


def _format_value(value: float | None) -> str:
    return f"{value:.2f}" if value is not None else "N/A"


class MessageDispatcher:
    """Routes decoded envelopes to the live state and the session components."""

    def __init__(
        self,
        *,
        live_state: LiveState,
        tracker: TripSessionTracker,
        crash: CrashEscalationSequencer,
        gps_monitor: GPSHealthMonitor,
        pending: PendingCommands | None = None,
        notifier: Notifier | None = None,
        on_safety_event: Callable[[WarningPayload], None] | None = None,
        on_passthrough: Callable[[Envelope], None] | None = None,
        on_heartbeat_ack: Callable[[], None] | None = None,
        on_change: Callable[[LiveState], None] | None = None,
    ) -> None:
        self._live = live_state
        self._tracker = tracker
        self._crash = crash
        self._gps = gps_monitor
        self._pending = pending
        self._notifier = notifier
        self._on_safety_event = on_safety_event
        self._on_passthrough = on_passthrough
        self._on_heartbeat_ack = on_heartbeat_ack
        self._on_change = on_change

        self._handlers: dict[str, Callable[[Envelope], None]] = {
            MessageType.LIVE_DATA: self._handle_live_data,
            MessageType.WARNING: self._handle_warning,
            MessageType.CRASH: self._handle_crash,
            MessageType.VIDEO_FRAME: self._handle_passthrough,
            MessageType.DETECTION_DATA: self._handle_passthrough,
            MessageType.LANE_WARNING: self._handle_lane_warning,
            MessageType.TRIP_STARTED: self._handle_trip_started,
            MessageType.TRIP_STOPPED: self._handle_trip_stopped,
            MessageType.CAMERA_STATUS: self._handle_camera_status,
            MessageType.ERROR: self._handle_error,
            MessageType.PONG: self._handle_pong,
        }

    def handle(self, raw: str | bytes | bytearray | Mapping[str, Any]) -> bool:
        """Process one inbound message; returns whether it was handled."""
        try:
            envelope = parse_envelope(raw)
        except ProtocolError as exc:
            _logger.warning("Dropping malformed message: %s", exc)
            return False

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Inbound %s: %s", envelope.type, summarize_inbound(envelope.type, envelope.data))

        handler = self._handlers.get(envelope.type)
        if handler is None:
            _logger.warning("Unknown message type: %s", envelope.type)
            return False

        try:
            handler(envelope)
        except ProtocolError as exc:
            _logger.warning("Dropping %s message: %s", envelope.type, exc)
            return False
        except TelemetryValidationError as exc:
            _logger.warning("Rejected %s message: %s", envelope.type, exc)
            emit(self._notifier, NotificationLevel.WARNING, f"Warning: {exc}")
            return False
        except Exception:
            _logger.warning("Handler for %s failed", envelope.type, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_live_data(self, envelope: Envelope) -> None:
        payload: LiveDataPayload = _validate(LiveDataPayload, envelope)
        changed = self._live.apply_live_data(payload)

        if is_valid_coordinate(payload.latitude, payload.longitude):
            assert payload.latitude is not None and payload.longitude is not None
            self._gps.observe(payload.latitude, payload.longitude)
            if self._live.trip_active:
                self._tracker.record_position(payload.latitude, payload.longitude, self._live.speed)

        if changed:
            self._changed()

    def _handle_warning(self, envelope: Envelope) -> None:
        payload: WarningPayload = _validate(WarningPayload, envelope)
        warning_type = payload.warning_type
        _logger.info("Safety event %s value=%s", warning_type, _format_value(payload.value))

        counter = _COUNTED_WARNINGS.get(warning_type)
        if counter is not None:
            setattr(self._live, counter, getattr(self._live, counter) + 1)
        elif warning_type in _CRASH_WARNINGS:
            position = self._event_position(payload.latitude, payload.longitude)
            if position is not None:
                self._crash.trigger(position[0], position[1], payload.value)
            else:
                _logger.warning("No position available for %s event", warning_type)

        emit(
            self._notifier,
            NotificationLevel.WARNING,
            f"{warning_type}: {_format_value(payload.value)}",
        )
        if self._live.trip_active and self._on_safety_event is not None:
            self._on_safety_event(payload)
        self._changed()

    def _handle_crash(self, envelope: Envelope) -> None:
        payload: CrashPayload = _validate(CrashPayload, envelope)
        started = self._crash.trigger(payload.latitude, payload.longitude, payload.value)
        if not started:
            _logger.info("Crash event while a countdown is already running")

    def _handle_passthrough(self, envelope: Envelope) -> None:
        if self._on_passthrough is not None:
            self._on_passthrough(envelope)

    def _handle_lane_warning(self, envelope: Envelope) -> None:
        payload: LaneWarningPayload = _validate(LaneWarningPayload, envelope)
        self._live.lane_departures += 1
        emit(self._notifier, NotificationLevel.WARNING, f"LANE DEPARTURE: {payload.direction}")
        self._changed()

    def _handle_trip_started(self, envelope: Envelope) -> None:
        try:
            payload = TripStartedPayload.model_validate(envelope.data_dict or {})
        except ValidationError as exc:
            self._reject_pending(PendingKind.TRIP_START)
            raise TelemetryValidationError("Invalid trip ID received", field="trip_id") from exc

        trip_id = payload.trip_id
        if self._live.trip_active and self._live.trip_id == trip_id:
            _logger.debug("Duplicate trip_started for trip %d", trip_id)
            return

        if self._tracker.is_active:
            _logger.warning("Trip %d confirmed while trip %s is tracked; dropping the old one", trip_id, self._tracker.trip_id)
            self._tracker.abandon()

        self._live.begin_trip(trip_id)
        position = self._live.position
        try:
            if position is None:
                raise TelemetryValidationError("No GPS position to start trip tracking", field="position")
            self._tracker.start(trip_id, position[0], position[1])
        except TelemetryValidationError as exc:
            _logger.warning("Trip %d started without tracking: %s", trip_id, exc)
            emit(self._notifier, NotificationLevel.WARNING, f"Trip started but distance is not tracked: {exc}")

        if self._pending is not None:
            self._pending.resolve(PendingKind.TRIP_START)
        emit(self._notifier, NotificationLevel.SUCCESS, "Trip started successfully!")
        self._changed()

    def _handle_trip_stopped(self, envelope: Envelope) -> None:
        payload = TripStoppedPayload.model_validate(envelope.data_dict or {})
        summary = self._tracker.abandon()
        self._live.end_trip()
        if payload.distance is not None:
            distance = payload.distance
        elif summary is not None:
            distance = summary.distance_km
        else:
            distance = None
        text = f"{distance:.2f} km" if distance is not None else "N/A"
        emit(self._notifier, NotificationLevel.SUCCESS, f"Trip ended. Distance: {text}")
        self._changed()

    def _handle_camera_status(self, envelope: Envelope) -> None:
        payload: CameraStatusPayload = _validate(CameraStatusPayload, envelope)
        self._live.camera_enabled = payload.enabled
        if self._pending is not None:
            self._pending.resolve(PendingKind.CAMERA)
        _logger.debug("Camera confirmed %s", "on" if payload.enabled else "off")
        self._changed()

    def _handle_error(self, envelope: Envelope) -> None:
        data = envelope.data_dict or {}
        message = envelope.message or safe_str(data.get("message")) or "Unknown error"
        _logger.warning("Backend error: %s", message)
        emit(self._notifier, NotificationLevel.ERROR, f"Error: {message}")

        lowered = message.lower()
        if "trip" in lowered:
            self._tracker.abandon()
            self._live.end_trip()
            self._reject_pending(PendingKind.TRIP_START)
            self._changed()
        if "camera" in lowered:
            self._reject_pending(PendingKind.CAMERA)

    def _handle_pong(self, envelope: Envelope) -> None:
        _logger.debug("Heartbeat acknowledged")
        if self._on_heartbeat_ack is not None:
            self._on_heartbeat_ack()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _event_position(self, latitude: float | None, longitude: float | None) -> tuple[float, float] | None:
        if is_valid_coordinate(latitude, longitude):
            assert latitude is not None and longitude is not None
            return latitude, longitude
        return self._live.position

    def _reject_pending(self, kind: PendingKind) -> None:
        if self._pending is None:
            return
        command = self._pending.resolve(kind)
        if command is not None:
            _logger.info("Pending %s rejected by backend", kind)

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self._live)
        except Exception:
            _logger.debug("on_change callback failed", exc_info=True)
