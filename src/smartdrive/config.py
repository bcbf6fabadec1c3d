"""Client configuration for smartdrive."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from smartdrive import _constants as c
from smartdrive.exceptions import SmartDriveConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class SmartDriveConfig:
    """Client configuration.

    All durations are in seconds.

    Parameters
    ----------
    ws_url : str
        Websocket endpoint of the telemetry bridge.
    api_url : str
        HTTP endpoint of the backend ``operation`` API (persistence).
    heartbeat_interval : float
        Period of the ``ping`` liveness probe while connected.
    reconnect_base_delay : float
        First reconnect delay; doubled on every consecutive failure.
    reconnect_max_delay : float
        Upper bound of the reconnect delay.  Attempts are unbounded.
    queue_capacity : int
        Maximum number of outbound commands held while offline.
    trip_sync_interval : float
        Period of the background waypoint sync while a trip is active.
    trip_sync_batch_size : int
        Maximum number of waypoints sent per sync.
    crash_countdown : int
        Number of one-second ticks before a crash is escalated.
    gps_stale_after : float
        Seconds without a position sample before GPS data is considered stale.
    gps_health_check_interval : float
        Period of the background GPS health check.
    command_timeout : float
        Seconds to wait for the backend to confirm ``start_trip`` or a
        camera toggle before the tentative state is rolled back.
    auto_start_camera : bool
        Request the camera stream every time the channel (re)connects.
    request_timeout : float
        Total timeout of a single persistence HTTP request.
    default_latitude : float or None
        Position assumed until the first live sample arrives.
    default_longitude : float or None
        Position assumed until the first live sample arrives.
    """

    ws_url: str = c.WS_URL
    api_url: str = c.API_URL
    heartbeat_interval: float = c.HEARTBEAT_INTERVAL_S
    reconnect_base_delay: float = c.RECONNECT_BASE_DELAY_S
    reconnect_max_delay: float = c.RECONNECT_MAX_DELAY_S
    queue_capacity: int = c.OUTBOUND_QUEUE_CAPACITY
    trip_sync_interval: float = c.TRIP_SYNC_INTERVAL_S
    trip_sync_batch_size: int = c.TRIP_SYNC_BATCH_SIZE
    crash_countdown: int = c.CRASH_COUNTDOWN_TICKS
    gps_stale_after: float = c.GPS_STALE_AFTER_S
    gps_health_check_interval: float = c.GPS_HEALTH_CHECK_INTERVAL_S
    command_timeout: float = 15.0
    auto_start_camera: bool = True
    request_timeout: float = 10.0
    default_latitude: float | None = 31.5204
    default_longitude: float | None = 74.3587

    def __post_init__(self) -> None:
        if not self.ws_url.startswith(("ws://", "wss://")):
            raise SmartDriveConfigError(f"ws_url must be a ws:// or wss:// URL, got {self.ws_url!r}")
        if self.reconnect_base_delay <= 0:
            raise SmartDriveConfigError("reconnect_base_delay must be positive")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise SmartDriveConfigError("reconnect_max_delay must be >= reconnect_base_delay")
        if self.queue_capacity < 0:
            raise SmartDriveConfigError("queue_capacity must not be negative")
        if self.crash_countdown < 1:
            raise SmartDriveConfigError("crash_countdown must be at least 1")

    @classmethod
    def from_env(cls, **overrides: Any) -> SmartDriveConfig:
        """Create configuration from environment variables.

        Reads optional ``SMARTDRIVE_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SmartDriveConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "SMARTDRIVE_WS_URL": "ws_url",
            "SMARTDRIVE_API_URL": "api_url",
        }
        _ENV_FLOAT_MAP = {
            "SMARTDRIVE_HEARTBEAT_INTERVAL": "heartbeat_interval",
            "SMARTDRIVE_RECONNECT_BASE_DELAY": "reconnect_base_delay",
            "SMARTDRIVE_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "SMARTDRIVE_TRIP_SYNC_INTERVAL": "trip_sync_interval",
            "SMARTDRIVE_GPS_STALE_AFTER": "gps_stale_after",
            "SMARTDRIVE_COMMAND_TIMEOUT": "command_timeout",
            "SMARTDRIVE_REQUEST_TIMEOUT": "request_timeout",
        }
        _ENV_INT_MAP = {
            "SMARTDRIVE_QUEUE_CAPACITY": "queue_capacity",
            "SMARTDRIVE_CRASH_COUNTDOWN": "crash_countdown",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in (*_ENV_FLOAT_MAP.items(), *_ENV_INT_MAP.items()):
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = int(val) if env_key in _ENV_INT_MAP else float(val)
            except ValueError as exc:
                raise SmartDriveConfigError(f"{env_key} is not a number: {val!r}") from exc

        if "auto_start_camera" not in overrides:
            config_kwargs["auto_start_camera"] = _env_bool(env.get("SMARTDRIVE_AUTO_START_CAMERA"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
