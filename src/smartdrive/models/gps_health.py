"""GPS health models."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict


class GpsHealthStatus(enum.StrEnum):
    """Operator-facing GPS condition.

    ``STUCK`` is a sensor/source fault (position frozen while data keeps
    arriving); ``NO_DATA`` and ``STALE`` are connectivity faults.
    """

    NO_DATA = "no_data"
    STALE = "stale"
    STUCK = "stuck"
    OK = "ok"


class GpsHealthRecord(BaseModel):
    """Mutable bookkeeping, written only by the GPS health monitor."""

    model_config = ConfigDict(extra="forbid")

    last_update: float | None = None
    last_lat: float | None = None
    last_lon: float | None = None
    update_count: int = 0
    stuck_count: int = 0
    is_stuck: bool = False
