"""Tests for envelope parsing, payload coercion and outbound command models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from smartdrive.exceptions import ProtocolError
from smartdrive.models.commands import PingMessage, StartTripCommand, StopTripCommand, ToggleCameraCommand
from smartdrive.models.envelope import (
    CrashPayload,
    LiveDataPayload,
    WarningPayload,
    coerce_trip_id,
    parse_envelope,
)
from smartdrive.models.trip import Waypoint

# ------------------------------------------------------------------
# Envelope
# ------------------------------------------------------------------


class TestEnvelope:
    def test_parses_text_bytes_and_mappings(self) -> None:
        assert parse_envelope('{"type": "pong"}').type == "pong"
        assert parse_envelope(b'{"type": "pong"}').type == "pong"
        assert parse_envelope({"type": " live_data ", "data": {}}).type == "live_data"

    def test_keeps_top_level_error_message(self) -> None:
        envelope = parse_envelope('{"type": "error", "message": "Trip not found"}')

        assert envelope.message == "Trip not found"
        assert envelope.data_dict is None

    def test_string_timestamp_is_coerced(self) -> None:
        assert parse_envelope({"type": "pong", "timestamp": "1700000000"}).timestamp == 1_700_000_000.0

    @pytest.mark.parametrize("raw", ["{", "42", '{"type": 7}', '{"type": "  "}', "null"])
    def test_rejects_malformed_frames(self, raw: str) -> None:
        with pytest.raises(ProtocolError):
            parse_envelope(raw)


# ------------------------------------------------------------------
# Payloads
# ------------------------------------------------------------------


class TestLiveDataPayload:
    def test_coerces_numeric_strings_and_aliases(self) -> None:
        payload = LiveDataPayload.model_validate({"speed": "54.5", "lat": "31.52", "lng": 74.35, "lane_status": "left"})

        assert payload.speed == 54.5
        assert payload.latitude == 31.52
        assert payload.longitude == 74.35
        assert payload.lane_status == "LEFT"

    def test_gps_speed_is_fallback(self) -> None:
        assert LiveDataPayload.model_validate({"gps_speed": 12}).effective_speed == 12.0
        assert LiveDataPayload.model_validate({"speed": 0, "gps_speed": 12}).effective_speed == 0.0

    def test_garbage_becomes_missing(self) -> None:
        payload = LiveDataPayload.model_validate({"speed": "fast", "acceleration": None, "safety_score": "n/a"})

        assert payload.speed is None
        assert payload.acceleration is None
        assert payload.safety_score is None


class TestWarningPayload:
    def test_type_is_upper_cased(self) -> None:
        assert WarningPayload.model_validate({"warning_type": "hard_brake"}).warning_type == "HARD_BRAKE"

    def test_type_is_required(self) -> None:
        with pytest.raises(ValidationError):
            WarningPayload.model_validate({"value": 1.0})


class TestCrashPayload:
    def test_requires_finite_coordinates(self) -> None:
        with pytest.raises(ValidationError):
            CrashPayload.model_validate({"latitude": "NaN", "longitude": 74.3})

    def test_severity_is_optional(self) -> None:
        payload = CrashPayload.model_validate({"latitude": "31.5", "longitude": "74.3"})

        assert (payload.latitude, payload.longitude, payload.value) == (31.5, 74.3, None)


class TestTripId:
    @pytest.mark.parametrize(("value", "expected"), [(42, 42), ("42", 42), (" 7 ", 7), (3.0, 3)])
    def test_accepts_positive_integers(self, value: object, expected: int) -> None:
        assert coerce_trip_id(value) == expected

    @pytest.mark.parametrize("value", [0, -1, "0", "-4", "4a", 2.5, True, None, float("nan")])
    def test_rejects_everything_else(self, value: object) -> None:
        with pytest.raises(ValueError):
            coerce_trip_id(value)


# ------------------------------------------------------------------
# Outbound
# ------------------------------------------------------------------


class TestCommands:
    def test_wire_shapes(self) -> None:
        assert StartTripCommand(driver_id=1, vehicle_id=2).to_wire() == {
            "command": "start_trip",
            "driver_id": 1,
            "vehicle_id": 2,
        }
        assert ToggleCameraCommand(enable=False).to_wire() == {"command": "toggle_camera", "enable": False}
        assert PingMessage(timestamp=5).to_wire() == {"type": "ping", "timestamp": 5}

    def test_stop_trip_requires_positive_id(self) -> None:
        with pytest.raises(ValidationError):
            StopTripCommand(trip_id=0)


class TestWaypoint:
    def test_is_immutable(self) -> None:
        waypoint = Waypoint(lat=31.5, lon=74.3, time=0.0, speed=10.0)

        with pytest.raises(ValidationError):
            waypoint.lat = 1.0  # type: ignore[misc]
