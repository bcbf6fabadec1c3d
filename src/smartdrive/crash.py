"""Crash escalation countdown.

A detected crash starts a cancellable countdown.  If the operator does
not cancel it, an ``ACCIDENT`` incident is reported exactly once.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field

from smartdrive._constants import CRASH_COUNTDOWN_TICKS, CRASH_TICK_INTERVAL_S
from smartdrive._scheduler import Scheduler, TaskHandle
from smartdrive.exceptions import TelemetryValidationError
from smartdrive.notifications import NotificationLevel, Notifier, emit
from smartdrive.persistence import IncidentType, Persistence

_logger = logging.getLogger(__name__)


@dataclass
class CrashSequence:
    started_at: float
    remaining_seconds: int
    latitude: float
    longitude: float
    severity: float | None = None
    cancelled: bool = False
    handle: TaskHandle | None = field(default=None, repr=False)


def _describe_severity(severity: float | None) -> str:
    return f"{severity:.2f}" if severity is not None else "unknown"


class CrashEscalationSequencer:
    """Single-flight crash countdown with escalation to the incident store."""

    def __init__(
        self,
        *,
        persistence: Persistence,
        scheduler: Scheduler,
        vehicle_id_source: Callable[[], int],
        notifier: Notifier | None = None,
        countdown: int = CRASH_COUNTDOWN_TICKS,
        tick_interval: float = CRASH_TICK_INTERVAL_S,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        self._persistence = persistence
        self._scheduler = scheduler
        self._vehicle_id_source = vehicle_id_source
        self._notifier = notifier
        self._countdown = countdown
        self._tick_interval = tick_interval
        self._on_tick = on_tick
        self._sequence: CrashSequence | None = None

    @property
    def active(self) -> bool:
        return self._sequence is not None

    @property
    def sequence(self) -> CrashSequence | None:
        return self._sequence

    @property
    def remaining_seconds(self) -> int:
        return self._sequence.remaining_seconds if self._sequence is not None else 0

    def trigger(self, latitude: float, longitude: float, severity: float | None = None) -> bool:
        """Start the countdown; ignored (returns ``False``) while one is running."""
        if self._sequence is not None:
            _logger.debug("Crash countdown already active, ignoring trigger")
            return False
        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            raise TelemetryValidationError(
                f"Invalid crash position: {latitude}, {longitude}",
                field="position",
            )

        sequence = CrashSequence(
            started_at=self._scheduler.now(),
            remaining_seconds=self._countdown,
            latitude=latitude,
            longitude=longitude,
            severity=severity,
        )
        sequence.handle = self._scheduler.call_every(self._tick_interval, lambda: self._tick(sequence))
        self._sequence = sequence
        _logger.warning(
            "Crash detected at %.6f, %.6f severity=%s; escalating in %ds",
            latitude,
            longitude,
            _describe_severity(severity),
            self._countdown,
        )
        emit(
            self._notifier,
            NotificationLevel.ERROR,
            f"CRASH DETECTED! Emergency services will be notified in {self._countdown}s unless cancelled.",
        )
        return True

    def cancel(self) -> bool:
        """Stop the countdown without escalating; no-op when none is active."""
        sequence = self._sequence
        if sequence is None:
            return False
        sequence.cancelled = True
        if sequence.handle is not None:
            sequence.handle.cancel()
        self._sequence = None
        _logger.info("Crash countdown cancelled with %ds remaining", sequence.remaining_seconds)
        emit(self._notifier, NotificationLevel.INFO, "Emergency alert cancelled")
        return True

    def _tick(self, sequence: CrashSequence) -> None:
        if sequence.cancelled or self._sequence is not sequence:
            return
        sequence.remaining_seconds -= 1
        if self._on_tick is not None:
            try:
                self._on_tick(sequence.remaining_seconds)
            except Exception:
                _logger.debug("on_tick callback failed", exc_info=True)
        if sequence.remaining_seconds > 0:
            return

        if sequence.handle is not None:
            sequence.handle.cancel()
        self._sequence = None
        self._scheduler.spawn(self._escalate(sequence))

    async def _escalate(self, sequence: CrashSequence) -> bool:
        description = f"Automatic crash detection - Severity: {_describe_severity(sequence.severity)}"
        try:
            vehicle_id = self._vehicle_id_source()
            reported = await self._persistence.report_incident(
                vehicle_id,
                IncidentType.ACCIDENT,
                sequence.latitude,
                sequence.longitude,
                description,
            )
        except Exception as exc:
            _logger.error("Crash escalation failed: %s", exc)
            reported = False

        if reported:
            _logger.warning("Crash incident reported at %.6f, %.6f", sequence.latitude, sequence.longitude)
            emit(self._notifier, NotificationLevel.WARNING, "Emergency services notified")
        else:
            emit(
                self._notifier,
                NotificationLevel.ERROR,
                "Emergency alert could not be delivered. Call emergency services directly.",
            )
        return reported
