"""Shared live-state container.

One :class:`LiveState` instance is owned by the client and passed by
reference to the components that need it.  Any component may read it;
writes are funnelled through the dispatcher, the trip tracker, and the
client, and trip fields change only through :meth:`LiveState.begin_trip`
and :meth:`LiveState.end_trip` so that ``trip_id != 0`` always matches
``trip_active``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from smartdrive.exceptions import TelemetryValidationError
from smartdrive.ingestion.normalize import is_valid_coordinate
from smartdrive.models.envelope import LiveDataPayload


class LiveState(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    speed: float = 0.0
    acceleration: float = 0.0
    latitude: float | None = None
    longitude: float | None = None
    safety_score: int = 1000
    lane_status: str = "CENTERED"
    rapid_accel_count: int = 0
    hard_brake_count: int = 0
    lane_departures: int = 0
    trip_active: bool = False
    trip_id: int = 0
    camera_enabled: bool = False
    """Camera state as last confirmed by the backend."""

    def begin_trip(self, trip_id: int) -> None:
        if trip_id <= 0:
            raise TelemetryValidationError(f"Invalid trip id: {trip_id}", field="trip_id")
        self.trip_id = trip_id
        self.trip_active = True

    def end_trip(self) -> None:
        self.trip_id = 0
        self.trip_active = False

    def apply_live_data(self, payload: LiveDataPayload) -> bool:
        """Merge a ``live_data`` sample; returns whether anything changed.

        Missing or unparseable fields leave the current value in place.
        Coordinates are only taken as a pair.
        """
        changed = False
        speed = payload.effective_speed
        if speed is not None:
            self.speed = max(0.0, speed)
            changed = True
        if payload.acceleration is not None:
            self.acceleration = payload.acceleration
            changed = True
        if is_valid_coordinate(payload.latitude, payload.longitude):
            self.latitude = payload.latitude
            self.longitude = payload.longitude
            changed = True
        if payload.safety_score is not None:
            self.safety_score = payload.safety_score
            changed = True
        if payload.lane_status is not None:
            self.lane_status = payload.lane_status
            changed = True
        return changed

    @property
    def position(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return self.latitude, self.longitude

    def reset(self, *, latitude: float | None = None, longitude: float | None = None) -> None:
        """Return every field to its default (logout / session expiry)."""
        for name, info in type(self).model_fields.items():
            setattr(self, name, info.get_default(call_default_factory=True))
        self.latitude = latitude
        self.longitude = longitude
