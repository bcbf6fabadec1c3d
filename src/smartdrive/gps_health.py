"""GPS health monitoring.

Two independent faults are tracked.  A *stuck* sensor keeps reporting the
same position while data still flows; *stale* data means samples stopped
arriving.  They are reported separately because the operator responds to
them differently.
"""

from __future__ import annotations

import logging

from smartdrive._constants import (
    GPS_HEALTH_CHECK_INTERVAL_S,
    GPS_STALE_AFTER_S,
    GPS_STUCK_DELTA_DEG,
    GPS_STUCK_LIMIT,
)
from smartdrive._scheduler import Scheduler, TaskHandle
from smartdrive.ingestion.normalize import is_valid_coordinate
from smartdrive.models.gps_health import GpsHealthRecord, GpsHealthStatus
from smartdrive.notifications import NotificationLevel, Notifier, emit

_logger = logging.getLogger(__name__)


class GPSHealthMonitor:
    def __init__(
        self,
        *,
        scheduler: Scheduler,
        notifier: Notifier | None = None,
        stale_after: float = GPS_STALE_AFTER_S,
        check_interval: float = GPS_HEALTH_CHECK_INTERVAL_S,
        stuck_delta: float = GPS_STUCK_DELTA_DEG,
        stuck_limit: int = GPS_STUCK_LIMIT,
    ) -> None:
        self._scheduler = scheduler
        self._notifier = notifier
        self._stale_after = stale_after
        self._check_interval = check_interval
        self._stuck_delta = stuck_delta
        self._stuck_limit = stuck_limit
        self._record = GpsHealthRecord()
        self._check_handle: TaskHandle | None = None
        self._last_status = GpsHealthStatus.NO_DATA

    @property
    def record(self) -> GpsHealthRecord:
        return self._record.model_copy()

    @property
    def is_stuck(self) -> bool:
        return self._record.is_stuck

    def observe(self, latitude: float, longitude: float, timestamp: float | None = None) -> None:
        """Feed one position sample.

        ``timestamp`` is on the scheduler clock and defaults to now.
        Invalid coordinates are ignored.
        """
        if not is_valid_coordinate(latitude, longitude):
            return
        record = self._record
        if record.last_lat is not None and record.last_lon is not None:
            unchanged = (
                abs(latitude - record.last_lat) < self._stuck_delta
                and abs(longitude - record.last_lon) < self._stuck_delta
            )
            if unchanged:
                record.stuck_count += 1
                if record.stuck_count > self._stuck_limit and not record.is_stuck:
                    record.is_stuck = True
                    _logger.warning("GPS position unchanged for %d samples", record.stuck_count)
                    emit(
                        self._notifier,
                        NotificationLevel.WARNING,
                        "GPS appears stuck: position has not changed. Check the GPS sensor.",
                    )
            else:
                if record.is_stuck:
                    _logger.info("GPS movement resumed")
                record.stuck_count = 0
                record.is_stuck = False

        record.last_lat = latitude
        record.last_lon = longitude
        record.last_update = timestamp if timestamp is not None else self._scheduler.now()
        record.update_count += 1

    def staleness(self) -> float | None:
        """Seconds since the last observation, or ``None`` before the first one."""
        if self._record.last_update is None:
            return None
        return max(0.0, self._scheduler.now() - self._record.last_update)

    def is_stale(self) -> bool:
        age = self.staleness()
        return age is not None and age > self._stale_after

    def status(self) -> GpsHealthStatus:
        if self._record.last_update is None:
            return GpsHealthStatus.NO_DATA
        if self.is_stale():
            return GpsHealthStatus.STALE
        if self._record.is_stuck:
            return GpsHealthStatus.STUCK
        return GpsHealthStatus.OK

    # ------------------------------------------------------------------
    # Periodic check
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._check_handle is not None:
            return
        self._check_handle = self._scheduler.call_every(self._check_interval, self.check)

    def stop(self) -> None:
        if self._check_handle is not None:
            self._check_handle.cancel()
            self._check_handle = None

    def check(self) -> GpsHealthStatus:
        """Classify GPS health and notify once when samples stop arriving."""
        status = self.status()
        if status is GpsHealthStatus.STALE and self._last_status is not GpsHealthStatus.STALE:
            _logger.warning("No GPS data for %.1fs", self.staleness() or 0.0)
            emit(
                self._notifier,
                NotificationLevel.WARNING,
                "No GPS data received. Is the device disconnected?",
            )
        elif status is not self._last_status:
            _logger.debug("GPS health %s -> %s", self._last_status, status)
        self._last_status = status
        return status

    def reset(self) -> None:
        self.stop()
        self._record = GpsHealthRecord()
        self._last_status = GpsHealthStatus.NO_DATA
