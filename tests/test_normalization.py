from __future__ import annotations

import math

import pytest

from smartdrive._constants import SESSION_EXPIRED_CODES
from smartdrive.geo import haversine_km
from smartdrive.ingestion.normalize import is_valid_coordinate, safe_float, safe_int, safe_str


def test_session_expired_codes_include_unauthorized() -> None:
    assert "UNAUTHORIZED" in SESSION_EXPIRED_CODES


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (12, 12.0),
        ("3.5", 3.5),
        (" 7 ", 7.0),
        ("", None),
        (None, None),
        ("abc", None),
        (True, None),
        ("NaN", None),
        (float("inf"), None),
        ([1], None),
    ],
)
def test_safe_float(value: object, expected: float | None) -> None:
    assert safe_float(value) == expected


def test_safe_int_truncates_numeric_strings() -> None:
    assert safe_int("42.9") == 42
    assert safe_int("x") is None


def test_safe_str_strips_and_drops_blank() -> None:
    assert safe_str("  LEFT ") == "LEFT"
    assert safe_str("   ") is None
    assert safe_str(5) == "5"


@pytest.mark.parametrize(
    ("latitude", "longitude", "valid"),
    [
        (31.5204, 74.3587, True),
        (-33.9, 151.2, True),
        (0.0, 74.3587, False),
        (31.5204, 0.0, False),
        (None, 74.3587, False),
        (math.nan, 74.3587, False),
        (31.5204, math.inf, False),
        (91.0, 74.3587, False),
        (31.5204, -181.0, False),
    ],
)
def test_is_valid_coordinate(latitude: float | None, longitude: float | None, valid: bool) -> None:
    assert is_valid_coordinate(latitude, longitude) is valid


def test_haversine_identity_is_zero() -> None:
    assert haversine_km(31.5204, 74.3587, 31.5204, 74.3587) == 0.0


def test_haversine_is_symmetric() -> None:
    forward = haversine_km(31.5204, 74.3587, 24.8607, 67.0011)
    backward = haversine_km(24.8607, 67.0011, 31.5204, 74.3587)

    assert forward == pytest.approx(backward)
    assert 980 < forward < 1080


def test_haversine_one_millidegree_of_latitude() -> None:
    assert haversine_km(31.5204, 74.3587, 31.5214, 74.3587) == pytest.approx(0.1112, abs=1e-3)
