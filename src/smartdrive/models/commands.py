"""Outbound command models.

Commands are sent as flat JSON objects.  ``ping`` is the only outbound
message keyed by ``type`` rather than ``command``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, PositiveInt


class OutboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict as sent on the channel."""
        return self.model_dump(mode="json")


class StartTripCommand(OutboundMessage):
    """Ask the backend to allocate a trip; confirmed by ``trip_started``."""

    command: Literal["start_trip"] = "start_trip"
    driver_id: int
    vehicle_id: int


class StopTripCommand(OutboundMessage):
    command: Literal["stop_trip"] = "stop_trip"
    trip_id: PositiveInt


class ToggleCameraCommand(OutboundMessage):
    command: Literal["toggle_camera"] = "toggle_camera"
    enable: bool


class ResetCameraCommand(OutboundMessage):
    command: Literal["reset_camera"] = "reset_camera"


class PingMessage(OutboundMessage):
    """Heartbeat probe; ``timestamp`` is epoch milliseconds."""

    type: Literal["ping"] = "ping"
    timestamp: int
