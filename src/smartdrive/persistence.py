"""Persistence collaborator: trip waypoints, trip end, and incident reports.

Components only depend on the :class:`Persistence` protocol.  The bundled
:class:`HttpPersistenceClient` talks to the backend ``operation`` API:
every call is a JSON ``POST`` of ``{"operation", "session_id", ...}`` and
the reply carries ``{"status": "success" | "error", "code"?, ...}``.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import aiohttp

from smartdrive._constants import SESSION_EXPIRED_CODES, USER_AGENT
from smartdrive._redact import redact_for_log
from smartdrive.config import SmartDriveConfig
from smartdrive.exceptions import PersistenceError, SessionExpiredError
from smartdrive.session import OperatorSession

_logger = logging.getLogger(__name__)


class IncidentType(enum.IntEnum):
    """Incident categories understood by the backend."""

    ACCIDENT = 0
    BREAKDOWN = 1
    THEFT = 2
    VANDALISM = 3
    TRAFFIC_VIOLATION = 4
    OTHER = 5


class Persistence(Protocol):
    """Structural persistence interface.

    Every method returns ``True`` on success.  ``False`` or an exception
    both mean the write did not happen.
    """

    async def log_gps_point(self, trip_id: int, latitude: float, longitude: float, speed: float) -> bool: ...

    async def end_trip(self, trip_id: int, latitude: float, longitude: float, note: str) -> bool: ...

    async def report_incident(
        self,
        vehicle_id: int,
        incident_type: IncidentType,
        latitude: float,
        longitude: float,
        description: str,
    ) -> bool: ...


def _format_param(value: Any) -> str:
    # The backend reads every parameter as a form-style string.
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, enum.IntEnum):
        return str(int(value))
    return str(value)


class HttpPersistenceClient:
    """:class:`Persistence` implementation over the backend HTTP API."""

    def __init__(
        self,
        config: SmartDriveConfig,
        http_session: aiohttp.ClientSession,
        operator: OperatorSession,
        *,
        on_session_expired: Callable[[SessionExpiredError], None] | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._operator = operator
        self._on_session_expired = on_session_expired

    async def log_gps_point(self, trip_id: int, latitude: float, longitude: float, speed: float) -> bool:
        result = await self._post(
            "trip_log_gps",
            {"trip_id": trip_id, "latitude": latitude, "longitude": longitude, "speed": speed},
        )
        return result.get("status") == "success"

    async def end_trip(self, trip_id: int, latitude: float, longitude: float, note: str) -> bool:
        result = await self._post(
            "trip_end",
            {"trip_id": trip_id, "latitude": latitude, "longitude": longitude, "address": note},
        )
        return result.get("status") == "success"

    async def report_incident(
        self,
        vehicle_id: int,
        incident_type: IncidentType,
        latitude: float,
        longitude: float,
        description: str,
    ) -> bool:
        result = await self._post(
            "incident_report",
            {
                "vehicle_id": vehicle_id,
                "type": IncidentType(incident_type),
                "latitude": latitude,
                "longitude": longitude,
                "description": description,
            },
        )
        return result.get("status") == "success"

    async def _post(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """POST one operation and return the decoded reply.

        Raises
        ------
        SessionExpiredError
            The backend no longer accepts the operator session.
        PersistenceError
            Network failure, non-200 status, or a reply that is not a JSON
            object.
        """
        payload: dict[str, str] = {
            "operation": operation,
            "session_id": self._operator.session_id,
        }
        payload.update({key: _format_param(value) for key, value in params.items()})

        headers = {
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        _logger.debug("POST %s operation=%s payload=%s", self._config.api_url, operation, redact_for_log(payload))

        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
        try:
            async with self._http.post(
                self._config.api_url,
                data=json.dumps(payload, separators=(",", ":")),
                headers=headers,
                timeout=timeout,
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise PersistenceError(
                        f"HTTP {resp.status} from {operation}: {text[:200]}",
                        operation=operation,
                        status_code=resp.status,
                    )
        except PersistenceError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise PersistenceError(
                f"Request {operation} failed: {exc}",
                operation=operation,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"Invalid JSON from {operation}: {text[:200]}",
                operation=operation,
            ) from exc
        if not isinstance(result, dict):
            raise PersistenceError(f"Unexpected reply from {operation}: {text[:200]}", operation=operation)

        _logger.debug("Reply operation=%s body=%s", operation, redact_for_log(result))

        code = str(result.get("code") or "")
        if result.get("status") != "success" and code in SESSION_EXPIRED_CODES:
            error = SessionExpiredError(
                str(result.get("message") or "Session expired"),
                operation=operation,
                code=code,
            )
            if self._on_session_expired is not None:
                try:
                    self._on_session_expired(error)
                except Exception:
                    _logger.debug("on_session_expired callback failed", exc_info=True)
            raise error

        if result.get("status") != "success":
            _logger.warning(
                "Operation %s rejected: code=%s message=%s",
                operation,
                code or "-",
                result.get("message"),
            )
        return result
