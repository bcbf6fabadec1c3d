from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from smartdrive import SmartDriveClient, SmartDriveConfig
from smartdrive._scheduler import ManualScheduler
from smartdrive.connection import ConnectionState
from smartdrive.notifications import Notification, NotificationLevel
from smartdrive.persistence import IncidentType
from smartdrive.session import OperatorSession

_OPERATOR = OperatorSession(session_id="sess-1", driver_id=12, vehicle_id=3)


class _Channel:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str] | None = None
        self.close_code: int | None = None
        self.close_reason = ""
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def messages(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item

    async def close(self, *, code: int, reason: str) -> None:
        self.closed_with = (code, reason)
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)

    def feed(self, type_: str, data: Any = None) -> None:
        self._inbox.put_nowait(json.dumps({"type": type_, "data": data}))


class _Connector:
    def __init__(self) -> None:
        self.channels: list[_Channel] = []

    async def __call__(self, url: str) -> _Channel:
        channel = _Channel()
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> _Channel:
        return self.channels[-1]


class _Persistence:
    def __init__(self) -> None:
        self.ended: list[tuple[int, float, float, str]] = []
        self.incidents: list[tuple[int, IncidentType, float, float, str]] = []
        self.gps_points: list[tuple[int, float, float, float]] = []

    async def log_gps_point(self, trip_id: int, latitude: float, longitude: float, speed: float) -> bool:
        self.gps_points.append((trip_id, latitude, longitude, speed))
        return True

    async def end_trip(self, trip_id: int, latitude: float, longitude: float, note: str) -> bool:
        self.ended.append((trip_id, latitude, longitude, note))
        return True

    async def report_incident(
        self,
        vehicle_id: int,
        incident_type: IncidentType,
        latitude: float,
        longitude: float,
        description: str,
    ) -> bool:
        self.incidents.append((vehicle_id, incident_type, latitude, longitude, description))
        return True


class _Harness:
    def __init__(self, **config: Any) -> None:
        self.scheduler = ManualScheduler()
        self.connector = _Connector()
        self.persistence = _Persistence()
        self.notifications: list[Notification] = []
        self.states: list[ConnectionState] = []
        self.client = SmartDriveClient(
            SmartDriveConfig(**config),
            operator=_OPERATOR,
            scheduler=self.scheduler,
            persistence=self.persistence,
            connector=self.connector,
            notifier=self.notifications.append,
            on_connection_state=self.states.append,
        )

    @property
    def messages(self) -> list[str]:
        return [n.message for n in self.notifications]

    async def connect(self) -> _Channel:
        self.client.connect()
        await self.scheduler.run_pending()
        return self.connector.last

    async def aclose(self) -> None:
        await self.client.close()
        await self.scheduler.aclose()


@pytest.mark.asyncio
async def test_start_trip_offline_is_queued_and_confirmed_after_connect() -> None:
    h = _Harness()

    assert h.client.start_trip() is True
    assert h.client.trip_starting is True
    assert h.notifications[-1].level is NotificationLevel.WARNING
    assert h.client.live_state.trip_active is False

    channel = await h.connect()
    assert channel.sent == [
        {"command": "start_trip", "driver_id": 12, "vehicle_id": 3},
        {"command": "toggle_camera", "enable": True},
    ]

    channel.feed("trip_started", {"trip_id": 42})
    await h.scheduler.run_pending()

    assert h.client.trip_starting is False
    assert h.client.live_state.trip_active is True
    assert h.client.tracker.trip_id == 42
    assert "Trip started successfully!" in h.messages

    await h.aclose()


def test_unconfirmed_trip_start_expires() -> None:
    h = _Harness(command_timeout=15.0)
    h.client.start_trip()

    h.scheduler.advance(15.0)

    assert h.client.trip_starting is False
    assert h.client.live_state.trip_active is False
    assert h.notifications[-1].message == "Trip start was not confirmed by the backend"


@pytest.mark.asyncio
async def test_expired_trip_start_is_not_sent_later() -> None:
    h = _Harness(auto_start_camera=False, command_timeout=15.0)
    h.client.start_trip()
    h.scheduler.advance(16.0)

    assert len(h.client.connection.queue) == 0
    assert h.client.start_trip() is True

    channel = await h.connect()

    assert [msg["command"] for msg in channel.sent] == ["start_trip"]

    await h.aclose()


def test_start_trip_is_refused_while_a_trip_is_active() -> None:
    h = _Harness()
    h.client.dispatcher.handle('{"type": "trip_started", "data": {"trip_id": 5}}')

    assert h.client.start_trip() is False
    assert h.notifications[-1].message == "A trip is already active"
    assert len(h.client.connection.queue) == 0


def test_second_start_while_pending_is_ignored() -> None:
    h = _Harness()

    assert h.client.start_trip() is True
    assert h.client.start_trip() is False
    assert len(h.client.connection.queue) == 1


@pytest.mark.asyncio
async def test_stop_trip_persists_end_and_sends_stop_command() -> None:
    h = _Harness(auto_start_camera=False)
    channel = await h.connect()
    channel.feed("trip_started", {"trip_id": 42})
    channel.feed("live_data", {"speed": 40, "latitude": 31.5214, "longitude": 74.3587})
    await h.scheduler.run_pending()

    assert await h.client.stop_trip() is True
    await h.scheduler.run_pending()

    assert h.persistence.ended == [(42, 31.5214, 74.3587, "")]
    assert {"command": "stop_trip", "trip_id": 42} in channel.sent
    assert h.client.live_state.trip_active is False
    assert h.client.tracker.last_summary is not None
    assert h.client.tracker.last_summary.distance_km > 0.1

    await h.aclose()


@pytest.mark.asyncio
async def test_stop_trip_without_trip_warns() -> None:
    h = _Harness()

    assert await h.client.stop_trip() is False
    assert h.notifications[-1].message == "No active trip to stop"


def test_camera_restart_after_stop_sends_reset_first() -> None:
    h = _Harness()

    assert h.client.toggle_camera(False) is True
    assert h.client.camera_enabled is False
    assert h.client.toggle_camera() is True

    assert [item["command"] for item in h.client.connection.queue] == [
        "toggle_camera",
        "reset_camera",
        "toggle_camera",
    ]
    assert h.client.camera_enabled is True


@pytest.mark.asyncio
async def test_camera_state_is_tentative_until_confirmed() -> None:
    h = _Harness()
    channel = await h.connect()

    assert h.client.camera_enabled is True
    assert h.client.live_state.camera_enabled is False

    channel.feed("camera_status", {"enabled": True})
    await h.scheduler.run_pending()

    assert h.client.live_state.camera_enabled is True
    assert h.client.camera_enabled is True

    await h.aclose()


@pytest.mark.asyncio
async def test_safety_event_during_trip_is_reported_as_incident() -> None:
    h = _Harness(auto_start_camera=False)
    channel = await h.connect()
    channel.feed("trip_started", {"trip_id": 9})
    channel.feed("warning", {"warning_type": "HARD_BRAKE", "value": 0.8})
    await h.scheduler.run_pending()

    assert h.persistence.incidents == [
        (3, IncidentType.TRAFFIC_VIOLATION, 31.5204, 74.3587, "HARD_BRAKE: 0.80 (Trip 9)"),
    ]

    await h.aclose()


@pytest.mark.asyncio
async def test_logout_stops_trip_closes_channel_and_resets_state() -> None:
    h = _Harness(auto_start_camera=False)
    channel = await h.connect()
    channel.feed("trip_started", {"trip_id": 42})
    channel.feed("warning", {"warning_type": "RAPID_ACCEL", "value": 0.4})
    await h.scheduler.run_pending()

    await h.client.logout()
    h.scheduler.advance(120.0)
    await h.scheduler.run_pending()

    assert [ended[0] for ended in h.persistence.ended] == [42]
    assert channel.closed_with == (1000, "User logout")
    assert h.client.connection_state is ConnectionState.SHUTTING_DOWN
    assert len(h.connector.channels) == 1
    state = h.client.live_state
    assert state.trip_active is False
    assert state.rapid_accel_count == 0
    assert state.position == (31.5204, 74.3587)
    assert not h.client.tracker.is_active

    await h.scheduler.aclose()


@pytest.mark.asyncio
async def test_connection_loss_is_announced_once() -> None:
    h = _Harness(auto_start_camera=False)
    channel = await h.connect()

    await channel.close(code=1006, reason="gone")
    await h.scheduler.run_pending()

    assert h.client.connection_state is ConnectionState.RECONNECT_WAIT
    assert h.messages.count("Connection lost. Reconnecting...") == 1

    h.scheduler.advance(1.0)
    await h.scheduler.run_pending()
    assert h.client.connection_state is ConnectionState.CONNECTED
    assert len(h.connector.channels) == 2

    await h.aclose()


class _ExpiredHttpResponse:
    status = 200

    async def text(self) -> str:
        return json.dumps({"status": "error", "code": "UNAUTHORIZED", "message": "Session expired"})

    async def __aenter__(self) -> _ExpiredHttpResponse:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class _ExpiredHttpSession:
    def post(self, url: str, **kwargs: Any) -> _ExpiredHttpResponse:
        return _ExpiredHttpResponse()


@pytest.mark.asyncio
async def test_session_expiry_forces_logout() -> None:
    scheduler = ManualScheduler()
    connector = _Connector()
    notifications: list[Notification] = []
    client = SmartDriveClient(
        SmartDriveConfig(auto_start_camera=False),
        operator=_OPERATOR,
        session=_ExpiredHttpSession(),  # type: ignore[arg-type]
        scheduler=scheduler,
        connector=connector,
        notifier=notifications.append,
    )

    async with client:
        client.connect()
        await scheduler.run_pending()
        connector.last.feed("trip_started", {"trip_id": 42})
        await scheduler.run_pending()

        assert await client.stop_trip() is False
        await scheduler.run_pending()

        assert "Session expired. Please log in again." in [n.message for n in notifications]
        assert client.connection_state is ConnectionState.SHUTTING_DOWN
        assert connector.last.closed_with == (1000, "Session expired")

    await scheduler.aclose()


@pytest.mark.asyncio
async def test_close_cancels_trip_timers() -> None:
    h = _Harness(auto_start_camera=False)
    channel = await h.connect()
    channel.feed("trip_started", {"trip_id": 7})
    channel.feed("live_data", {"speed": 30, "latitude": 31.5214, "longitude": 74.3587})
    await h.scheduler.run_pending()
    assert h.client.tracker.is_active

    await h.client.close()
    h.scheduler.advance(61.0)
    await h.scheduler.run_pending()

    assert h.scheduler.active_timers == 0
    assert not h.client.tracker.is_active
    assert h.persistence.gps_points == []

    await h.scheduler.aclose()
