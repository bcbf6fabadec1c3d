"""High-level async client for the SmartDrive live telemetry channel."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from smartdrive._constants import LOGOUT_CLOSE_REASON
from smartdrive._scheduler import AsyncioScheduler, Scheduler
from smartdrive._ws import Channel, open_websocket_channel
from smartdrive.config import SmartDriveConfig
from smartdrive.connection import ConnectionManager, ConnectionState, Connector
from smartdrive.crash import CrashEscalationSequencer
from smartdrive.dispatcher import MessageDispatcher
from smartdrive.exceptions import (
    InvalidStateError,
    PersistenceError,
    SessionExpiredError,
    SmartDriveError,
    TelemetryValidationError,
)
from smartdrive.gps_health import GPSHealthMonitor
from smartdrive.ingestion.normalize import is_valid_coordinate
from smartdrive.models.commands import (
    ResetCameraCommand,
    StartTripCommand,
    StopTripCommand,
    ToggleCameraCommand,
)
from smartdrive.models.envelope import Envelope, WarningPayload, WarningType
from smartdrive.models.trip import ActiveTripInfo
from smartdrive.notifications import NotificationLevel, Notifier, emit
from smartdrive.persistence import HttpPersistenceClient, IncidentType, Persistence
from smartdrive.session import OperatorSession
from smartdrive.state.live import LiveState
from smartdrive.state.pending import PendingCommand, PendingCommands, PendingKind
from smartdrive.trip import TripSessionTracker

_logger = logging.getLogger(__name__)

_ACCIDENT_WARNINGS = frozenset({WarningType.CRASH, WarningType.IMPACT})


class _PersistenceGateway:
    """Forwards persistence calls to the backend bound when the client opens."""

    def __init__(self, target: Persistence | None = None) -> None:
        self.target = target

    def _require(self) -> Persistence:
        if self.target is None:
            raise PersistenceError("Client is not open; use 'async with SmartDriveClient(...)'")
        return self.target

    async def log_gps_point(self, trip_id: int, latitude: float, longitude: float, speed: float) -> bool:
        return await self._require().log_gps_point(trip_id, latitude, longitude, speed)

    async def end_trip(self, trip_id: int, latitude: float, longitude: float, note: str) -> bool:
        return await self._require().end_trip(trip_id, latitude, longitude, note)

    async def report_incident(
        self,
        vehicle_id: int,
        incident_type: IncidentType,
        latitude: float,
        longitude: float,
        description: str,
    ) -> bool:
        return await self._require().report_incident(vehicle_id, incident_type, latitude, longitude, description)


class SmartDriveClient:
    """Coordinator owning the live state and every session component.

    Usage::

        async with SmartDriveClient(config, operator=operator) as client:
            client.connect()
            client.start_trip()
            ...
            await client.stop_trip()
    """

    def __init__(
        self,
        config: SmartDriveConfig,
        *,
        operator: OperatorSession,
        session: aiohttp.ClientSession | None = None,
        scheduler: Scheduler | None = None,
        persistence: Persistence | None = None,
        connector: Connector | None = None,
        notifier: Notifier | None = None,
        on_change: Callable[[LiveState], None] | None = None,
        on_connection_state: Callable[[ConnectionState], None] | None = None,
        on_passthrough: Callable[[Envelope], None] | None = None,
        on_trip_tick: Callable[[ActiveTripInfo], None] | None = None,
        on_crash_tick: Callable[[int], None] | None = None,
    ) -> None:
        self._config = config
        self._operator = operator
        self._vehicle_id = operator.vehicle_id
        self._external_session = session is not None
        self._http_session = session
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._external_persistence = persistence is not None
        self._persistence = _PersistenceGateway(persistence)
        self._notifier = notifier
        self._on_connection_state_cb = on_connection_state
        self._camera_stopped = False
        self._logging_out = False

        self._live = LiveState(latitude=config.default_latitude, longitude=config.default_longitude)
        self._pending = PendingCommands(
            self._scheduler,
            timeout=config.command_timeout,
            on_expired=self._on_pending_expired,
        )
        self._tracker = TripSessionTracker(
            persistence=self._persistence,
            scheduler=self._scheduler,
            notifier=notifier,
            position_source=lambda: self._live.position,
            sync_interval=config.trip_sync_interval,
            sync_batch_size=config.trip_sync_batch_size,
            on_tick=on_trip_tick,
        )
        self._crash = CrashEscalationSequencer(
            persistence=self._persistence,
            scheduler=self._scheduler,
            vehicle_id_source=lambda: self._vehicle_id,
            notifier=notifier,
            countdown=config.crash_countdown,
            on_tick=on_crash_tick,
        )
        self._gps = GPSHealthMonitor(
            scheduler=self._scheduler,
            notifier=notifier,
            stale_after=config.gps_stale_after,
            check_interval=config.gps_health_check_interval,
        )
        self._dispatcher = MessageDispatcher(
            live_state=self._live,
            tracker=self._tracker,
            crash=self._crash,
            gps_monitor=self._gps,
            pending=self._pending,
            notifier=notifier,
            on_safety_event=self._on_safety_event,
            on_passthrough=on_passthrough,
            on_heartbeat_ack=self._on_heartbeat_ack,
            on_change=on_change,
        )
        self._connection = ConnectionManager(
            config,
            scheduler=self._scheduler,
            connector=connector if connector is not None else self._open_channel,
            on_message=self._dispatcher.handle,
            on_state_change=self._on_connection_state,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SmartDriveClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if not self._external_persistence:
            self._persistence.target = HttpPersistenceClient(
                self._config,
                self._http_session,
                self._operator,
                on_session_expired=self._on_session_expired,
            )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the channel, timers, and the HTTP session without logging out."""
        self._crash.cancel()
        self._gps.stop()
        self._tracker.abandon()
        self._pending.clear()
        await self._connection.aclose(LOGOUT_CLOSE_REASON)
        if self._owns_scheduler and isinstance(self._scheduler, AsyncioScheduler):
            await self._scheduler.aclose()
        if not self._external_persistence:
            self._persistence.target = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def live_state(self) -> LiveState:
        return self._live

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def tracker(self) -> TripSessionTracker:
        return self._tracker

    @property
    def crash(self) -> CrashEscalationSequencer:
        return self._crash

    @property
    def gps_monitor(self) -> GPSHealthMonitor:
        return self._gps

    @property
    def dispatcher(self) -> MessageDispatcher:
        return self._dispatcher

    @property
    def vehicle_id(self) -> int:
        return self._vehicle_id

    @property
    def trip_starting(self) -> bool:
        return self._pending.is_pending(PendingKind.TRIP_START)

    @property
    def camera_enabled(self) -> bool:
        """Camera state as the UI should show it, including an unconfirmed toggle."""
        pending = self._pending.get(PendingKind.CAMERA)
        if pending is not None:
            return bool(pending.value)
        return self._live.camera_enabled

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the live channel and start GPS health checks."""
        self._logging_out = False
        self._gps.start()
        self._connection.connect()

    def select_vehicle(self, vehicle_id: int) -> None:
        if vehicle_id <= 0:
            raise TelemetryValidationError(f"Invalid vehicle id: {vehicle_id}", field="vehicle_id")
        self._vehicle_id = vehicle_id

    def start_trip(self, vehicle_id: int | None = None) -> bool:
        """Ask the backend to start a trip.

        The trip becomes active only when ``trip_started`` arrives.  A
        trip error or a missing confirmation within ``command_timeout``
        clears the pending start and notifies the operator.
        """
        if self._live.trip_active:
            emit(self._notifier, NotificationLevel.WARNING, "A trip is already active")
            return False
        if self._pending.is_pending(PendingKind.TRIP_START):
            _logger.debug("start_trip ignored: confirmation already pending")
            return False
        if vehicle_id is not None:
            self.select_vehicle(vehicle_id)

        command = StartTripCommand(driver_id=self._operator.driver_id, vehicle_id=self._vehicle_id)
        if not self._connection.send(command):
            emit(self._notifier, NotificationLevel.ERROR, "Could not send trip start: outbound queue is full")
            return False
        self._pending.begin(PendingKind.TRIP_START, self._vehicle_id)
        if self._connection.is_connected:
            emit(self._notifier, NotificationLevel.INFO, "Starting trip...")
        else:
            emit(
                self._notifier,
                NotificationLevel.WARNING,
                "Not connected. The trip will start once the connection is restored.",
            )
        return True

    async def stop_trip(self) -> bool:
        """Stop the active trip; returns whether the trip was saved."""
        trip_id = self._live.trip_id or self._tracker.trip_id or 0
        if not trip_id:
            emit(self._notifier, NotificationLevel.WARNING, "No active trip to stop")
            return False

        try:
            saved = await self._tracker.stop()
        except TelemetryValidationError as exc:
            emit(self._notifier, NotificationLevel.ERROR, f"Failed to stop trip: {exc}")
            return False

        self._connection.send(StopTripCommand(trip_id=trip_id))
        self._live.end_trip()
        self._pending.resolve(PendingKind.TRIP_START)
        return saved

    def toggle_camera(self, enable: bool | None = None) -> bool:
        """Request the camera on or off; the state is tentative until confirmed."""
        desired = (not self.camera_enabled) if enable is None else enable
        if desired and self._camera_stopped:
            # The bridge only restarts a stopped camera after a reset.
            if not self._connection.send(ResetCameraCommand()):
                return False
        if not self._connection.send(ToggleCameraCommand(enable=desired)):
            emit(self._notifier, NotificationLevel.ERROR, "Could not send camera command: outbound queue is full")
            return False
        self._pending.begin(PendingKind.CAMERA, desired)
        self._camera_stopped = not desired
        emit(self._notifier, NotificationLevel.INFO, "Starting camera..." if desired else "Stopping camera...")
        return True

    def reset_camera(self) -> bool:
        sent = self._connection.send(ResetCameraCommand())
        if sent:
            self._camera_stopped = False
        return sent

    def cancel_crash_alert(self) -> bool:
        return self._crash.cancel()

    async def logout(self, reason: str = LOGOUT_CLOSE_REASON) -> None:
        """End the operator session: stop everything and reset all state.

        An active trip is stopped and persisted first.  The channel is
        closed deliberately and will not reconnect.
        """
        if self._logging_out:
            return
        self._logging_out = True
        self._crash.cancel()
        self._gps.stop()
        if self._tracker.is_active or self._live.trip_active:
            try:
                await self.stop_trip()
            except SmartDriveError as exc:
                _logger.warning("Stopping trip during logout failed: %s", exc)
        self._pending.clear()
        await self._connection.aclose(reason)
        self._tracker.abandon()
        self._gps.reset()
        self._live.reset(latitude=self._config.default_latitude, longitude=self._config.default_longitude)
        self._camera_stopped = False
        _logger.info("Operator logged out (%s)", reason)

    # ------------------------------------------------------------------
    # Internal callbacks
    # ------------------------------------------------------------------

    async def _open_channel(self, url: str) -> Channel:
        if self._http_session is None:
            raise InvalidStateError("Client is not open; use 'async with SmartDriveClient(...)'")
        return await open_websocket_channel(self._http_session, url, timeout=self._config.request_timeout)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            emit(self._notifier, NotificationLevel.SUCCESS, "Connected to backend")
            if self._config.auto_start_camera and not self.camera_enabled:
                self.toggle_camera(True)
        elif state is ConnectionState.RECONNECT_WAIT and self._connection.reconnect_attempts <= 1:
            emit(self._notifier, NotificationLevel.WARNING, "Connection lost. Reconnecting...")
        if self._on_connection_state_cb is not None:
            try:
                self._on_connection_state_cb(state)
            except Exception:
                _logger.debug("on_connection_state callback failed", exc_info=True)

    def _on_heartbeat_ack(self) -> None:
        self._connection.note_heartbeat_ack()

    def _on_pending_expired(self, command: PendingCommand) -> None:
        if command.kind is PendingKind.TRIP_START:
            # Unsent starts expire with the pending state.
            self._connection.discard_queued("start_trip")
            emit(self._notifier, NotificationLevel.ERROR, "Trip start was not confirmed by the backend")
        elif command.kind is PendingKind.CAMERA:
            self._connection.discard_queued("toggle_camera")
            emit(self._notifier, NotificationLevel.WARNING, "Camera did not respond")

    def _on_session_expired(self, error: SessionExpiredError) -> None:
        if self._logging_out:
            return
        _logger.warning("Session expired during %s; logging out", error.operation or "request")
        emit(self._notifier, NotificationLevel.ERROR, "Session expired. Please log in again.")
        self._scheduler.spawn(self.logout("Session expired"))

    def _on_safety_event(self, payload: WarningPayload) -> None:
        trip_id = self._live.trip_id
        if is_valid_coordinate(payload.latitude, payload.longitude):
            assert payload.latitude is not None and payload.longitude is not None
            position: tuple[float, float] | None = (payload.latitude, payload.longitude)
        else:
            position = self._live.position
        if position is None:
            _logger.debug("Safety event %s not persisted: no position", payload.warning_type)
            return
        incident_type = (
            IncidentType.ACCIDENT if payload.warning_type in _ACCIDENT_WARNINGS else IncidentType.TRAFFIC_VIOLATION
        )
        value = f"{payload.value:.2f}" if payload.value is not None else "N/A"
        description = f"{payload.warning_type}: {value} (Trip {trip_id})"
        self._scheduler.spawn(self._report_safety_event(incident_type, position, description))

    async def _report_safety_event(
        self,
        incident_type: IncidentType,
        position: tuple[float, float],
        description: str,
    ) -> None:
        try:
            reported = await self._persistence.report_incident(
                self._vehicle_id,
                incident_type,
                position[0],
                position[1],
                description,
            )
        except PersistenceError as exc:
            _logger.warning("Safety event not persisted: %s", exc)
            return
        if not reported:
            _logger.warning("Safety event rejected by backend: %s", description)
