from __future__ import annotations

from smartdrive._redact import redact_for_log, summarize_inbound


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "operation": "trip_end",
        "session_id": "abc123",
        "password": "pw",
        "nested": {"Token": "t", "trip_id": "42"},
    }

    redacted = redact_for_log(payload)
    assert redacted["operation"] == "trip_end"
    assert redacted["session_id"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["nested"] == {"Token": "<redacted>", "trip_id": "42"}


def test_redact_for_log_truncates_long_strings() -> None:
    redacted = redact_for_log({"description": "x" * 600}, max_string=10)

    assert redacted["description"] == "x" * 10 + "...<590 more chars>"


def test_redact_for_log_summarizes_bytes_and_walks_lists() -> None:
    redacted = redact_for_log([b"\x00" * 4, {"session_id": "s"}, 3.5])

    assert redacted == ["<4 bytes>", {"session_id": "<redacted>"}, 3.5]


def test_video_frames_are_reduced_to_their_size() -> None:
    frame = "A" * 50_000

    assert summarize_inbound("video_frame", frame) == "<frame 50000 chars>"
    assert summarize_inbound("video_frame", {"frame": frame, "camera": 1}) == {
        "frame": "<frame 50000 chars>",
        "camera": 1,
    }


def test_telemetry_is_logged_as_is() -> None:
    data = {"speed": 42.0, "latitude": 31.5204}

    assert summarize_inbound("live_data", data) == data
