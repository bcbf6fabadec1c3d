"""Trip session models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Waypoint(BaseModel):
    """A recorded position sample.

    ``time`` is the scheduler's monotonic clock in seconds; ``speed`` is
    km/h (``0.0`` for the seed waypoint).
    """

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    time: float
    speed: float = 0.0


class TripSession(BaseModel):
    """The single active trip, exclusively owned by the tracker."""

    model_config = ConfigDict(extra="forbid")

    id: int
    start_time: float
    start_latitude: float
    start_longitude: float
    waypoints: list[Waypoint] = Field(default_factory=list)
    distance_km: float = 0.0
    speed_samples: list[float] = Field(default_factory=list)
    max_speed: float = 0.0
    synced_count: int = 0
    """Number of leading waypoints already sent to the persistence store."""

    @property
    def last_waypoint(self) -> Waypoint | None:
        return self.waypoints[-1] if self.waypoints else None

    @property
    def avg_speed(self) -> float:
        if not self.speed_samples:
            return 0.0
        return sum(self.speed_samples) / len(self.speed_samples)


class ActiveTripInfo(BaseModel):
    """Read-only snapshot of the active trip for display."""

    model_config = ConfigDict(frozen=True)

    trip_id: int
    duration_s: float
    distance_km: float
    max_speed: float
    waypoint_count: int


class TripSummary(BaseModel):
    """Final figures computed when a trip is stopped."""

    model_config = ConfigDict(frozen=True)

    trip_id: int
    duration_s: float
    distance_km: float
    avg_speed: float
    max_speed: float
    waypoint_count: int
    end_latitude: float | None = None
    end_longitude: float | None = None
