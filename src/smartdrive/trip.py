"""Trip session tracking.

The tracker owns the single active :class:`~smartdrive.models.TripSession`:
it accumulates waypoints and distance, syncs recent waypoints to the
persistence store in the background, and produces the final
:class:`~smartdrive.models.TripSummary` when the trip is stopped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from smartdrive._constants import (
    JITTER_THRESHOLD_KM,
    TRIP_DURATION_TICK_S,
    TRIP_SYNC_BATCH_SIZE,
    TRIP_SYNC_INTERVAL_S,
)
from smartdrive._scheduler import Scheduler, TaskHandle
from smartdrive.exceptions import InvalidStateError, TelemetryValidationError
from smartdrive.geo import haversine_km
from smartdrive.ingestion.normalize import is_valid_coordinate
from smartdrive.models.trip import ActiveTripInfo, TripSession, TripSummary, Waypoint
from smartdrive.notifications import NotificationLevel, Notifier, emit
from smartdrive.persistence import Persistence

_logger = logging.getLogger(__name__)

PositionSource = Callable[[], tuple[float, float] | None]


class TripSessionTracker:
    """Records one trip at a time and persists it on stop."""

    def __init__(
        self,
        *,
        persistence: Persistence,
        scheduler: Scheduler,
        notifier: Notifier | None = None,
        position_source: PositionSource | None = None,
        sync_interval: float = TRIP_SYNC_INTERVAL_S,
        sync_batch_size: int = TRIP_SYNC_BATCH_SIZE,
        on_tick: Callable[[ActiveTripInfo], None] | None = None,
    ) -> None:
        self._persistence = persistence
        self._scheduler = scheduler
        self._notifier = notifier
        self._position_source = position_source
        self._sync_interval = sync_interval
        self._sync_batch_size = sync_batch_size
        self._on_tick = on_tick

        self._session: TripSession | None = None
        self._last_summary: TripSummary | None = None
        self._sync_handle: TaskHandle | None = None
        self._tick_handle: TaskHandle | None = None
        self._syncing = False

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def trip_id(self) -> int | None:
        return self._session.id if self._session is not None else None

    @property
    def distance_km(self) -> float:
        return self._session.distance_km if self._session is not None else 0.0

    @property
    def waypoint_count(self) -> int:
        return len(self._session.waypoints) if self._session is not None else 0

    @property
    def last_summary(self) -> TripSummary | None:
        """Summary of the most recently stopped trip."""
        return self._last_summary

    def active_info(self) -> ActiveTripInfo | None:
        session = self._session
        if session is None:
            return None
        return ActiveTripInfo(
            trip_id=session.id,
            duration_s=self._scheduler.now() - session.start_time,
            distance_km=session.distance_km,
            max_speed=session.max_speed,
            waypoint_count=len(session.waypoints),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, trip_id: int, latitude: float, longitude: float) -> TripSession:
        """Begin tracking a backend-confirmed trip.

        Raises
        ------
        InvalidStateError
            A trip is already being tracked.
        TelemetryValidationError
            The trip id is not positive or the start position is invalid.
        """
        if self._session is not None:
            raise InvalidStateError(f"Trip {self._session.id} is already active")
        if trip_id <= 0:
            raise TelemetryValidationError(f"Invalid trip id: {trip_id}", field="trip_id")
        if not is_valid_coordinate(latitude, longitude):
            raise TelemetryValidationError(
                f"Invalid start position: {latitude}, {longitude}",
                field="position",
            )

        now = self._scheduler.now()
        session = TripSession(
            id=trip_id,
            start_time=now,
            start_latitude=latitude,
            start_longitude=longitude,
            waypoints=[Waypoint(lat=latitude, lon=longitude, time=now)],
        )
        self._session = session
        if self._sync_interval > 0:
            self._sync_handle = self._scheduler.call_every(self._sync_interval, self._sync_due)
        self._tick_handle = self._scheduler.call_every(TRIP_DURATION_TICK_S, self._tick)
        _logger.info("Trip %d tracking started at %.6f, %.6f", trip_id, latitude, longitude)
        return session

    def record_position(self, latitude: float, longitude: float, speed: float = 0.0) -> bool:
        """Append a waypoint; returns ``False`` when nothing was recorded.

        Moves shorter than about a metre are treated as GPS jitter and
        leave both the waypoint list and the distance unchanged.
        """
        session = self._session
        if session is None:
            return False
        if not is_valid_coordinate(latitude, longitude):
            _logger.debug("Ignoring invalid position %r, %r", latitude, longitude)
            return False

        last = session.waypoints[-1]
        delta_km = haversine_km(last.lat, last.lon, latitude, longitude)
        if delta_km < JITTER_THRESHOLD_KM:
            return False

        session.waypoints.append(
            Waypoint(lat=latitude, lon=longitude, time=self._scheduler.now(), speed=max(0.0, speed))
        )
        session.distance_km += delta_km
        if speed > 0:
            session.speed_samples.append(speed)
            session.max_speed = max(session.max_speed, speed)
        return True

    async def stop(self) -> bool:
        """Finish the trip and persist its end.

        Local state is cleared before the persistence outcome is known;
        the return value reflects only whether the backend saved the trip.
        Returns ``False`` without raising when no trip is active.

        Raises
        ------
        TelemetryValidationError
            No valid end position can be determined.  The trip stays active.
        """
        session = self._session
        if session is None:
            return False

        latitude, longitude = self._resolve_end_position(session)
        summary = self._summarize(session, latitude, longitude)
        self._clear()
        self._last_summary = summary
        _logger.info(
            "Trip %d stopped: %.3f km in %.0fs (%d waypoints)",
            summary.trip_id,
            summary.distance_km,
            summary.duration_s,
            summary.waypoint_count,
        )

        try:
            saved = await self._persistence.end_trip(session.id, latitude, longitude, "")
        except Exception as exc:
            _logger.warning("Saving trip %d failed: %s", session.id, exc)
            saved = False

        if saved:
            emit(
                self._notifier,
                NotificationLevel.SUCCESS,
                f"Trip saved! Distance: {summary.distance_km:.2f} km",
            )
        else:
            emit(
                self._notifier,
                NotificationLevel.ERROR,
                f"Trip {session.id} ended but its data could not be saved",
            )
        return saved

    def abandon(self) -> TripSummary | None:
        """Drop the active trip without persisting it (ended on the backend side)."""
        session = self._session
        if session is None:
            return None
        last = session.waypoints[-1]
        summary = self._summarize(session, last.lat, last.lon)
        self._clear()
        self._last_summary = summary
        _logger.info("Trip %d abandoned locally", session.id)
        return summary

    # ------------------------------------------------------------------
    # Background sync
    # ------------------------------------------------------------------

    async def sync_now(self) -> int:
        """Send the most recent unsynced waypoints; returns how many were stored.

        At most ``sync_batch_size`` waypoints are sent, oldest first.  The
        first failure stops the batch; it is retried on the next sync.
        """
        session = self._session
        if session is None or self._syncing:
            return 0
        if session.synced_count >= len(session.waypoints):
            return 0

        batch_start = max(session.synced_count, len(session.waypoints) - self._sync_batch_size)
        batch = session.waypoints[batch_start:]
        self._syncing = True
        stored = 0
        try:
            for offset, waypoint in enumerate(batch):
                try:
                    ok = await self._persistence.log_gps_point(
                        session.id, waypoint.lat, waypoint.lon, waypoint.speed
                    )
                except Exception as exc:
                    _logger.warning("Waypoint sync for trip %d failed: %s", session.id, exc)
                    break
                if not ok:
                    _logger.warning("Waypoint sync for trip %d rejected", session.id)
                    break
                stored += 1
                session.synced_count = batch_start + offset + 1
        finally:
            self._syncing = False

        _logger.debug("Synced %d/%d waypoints for trip %d", stored, len(batch), session.id)
        return stored

    def _sync_due(self) -> None:
        if self._session is not None:
            self._scheduler.spawn(self.sync_now())

    def _tick(self) -> None:
        info = self.active_info()
        if info is None or self._on_tick is None:
            return
        try:
            self._on_tick(info)
        except Exception:
            _logger.debug("on_tick callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_end_position(self, session: TripSession) -> tuple[float, float]:
        candidates: list[tuple[float, float] | None] = []
        if session.waypoints:
            last = session.waypoints[-1]
            candidates.append((last.lat, last.lon))
        candidates.append((session.start_latitude, session.start_longitude))
        if self._position_source is not None:
            candidates.append(self._position_source())

        for candidate in candidates:
            if candidate is not None and is_valid_coordinate(*candidate):
                return candidate
        raise TelemetryValidationError(
            f"No valid end position for trip {session.id}",
            field="position",
        )

    def _summarize(self, session: TripSession, latitude: float, longitude: float) -> TripSummary:
        return TripSummary(
            trip_id=session.id,
            duration_s=self._scheduler.now() - session.start_time,
            distance_km=session.distance_km,
            avg_speed=session.avg_speed,
            max_speed=session.max_speed,
            waypoint_count=len(session.waypoints),
            end_latitude=latitude,
            end_longitude=longitude,
        )

    def _clear(self) -> None:
        for handle in (self._sync_handle, self._tick_handle):
            if handle is not None:
                handle.cancel()
        self._sync_handle = None
        self._tick_handle = None
        self._session = None
