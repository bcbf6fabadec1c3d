"""Helpers for safe debug logging.

Persistence requests carry the operator session id, and inbound
``video_frame`` envelopes carry base64 JPEG frames that are far too large
to log.  :func:`redact_for_log` masks secrets and shortens long strings;
:func:`summarize_inbound` applies it to an inbound envelope and reduces
frame blobs to their size.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset({"password", "session_id", "sessionid", "token", "authorization"})

# Inbound types whose ``data`` is an opaque blob rather than telemetry.
_BLOB_TYPES: frozenset[str] = frozenset({"video_frame"})

_MAX_DEPTH = 8


def _shorten(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...<{len(text) - limit} more chars>"


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets masked and long strings cut."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _shorten(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if _depth >= _MAX_DEPTH:
        return "<nested>"
    if isinstance(value, Mapping):
        return {
            str(key): "<redacted>"
            if str(key).lower() in _SECRET_KEYS
            else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)


def summarize_inbound(message_type: str, data: Any, *, max_string: int = 120) -> Any:
    """Loggable form of an inbound envelope's ``data``."""
    if message_type in _BLOB_TYPES:
        if isinstance(data, str):
            return f"<frame {len(data)} chars>"
        if isinstance(data, Mapping):
            return {
                key: f"<frame {len(item)} chars>" if isinstance(item, str) and len(item) > max_string else item
                for key, item in data.items()
            }
    return redact_for_log(data, max_string=max_string)
