"""Custom exception hierarchy for smartdrive."""

from __future__ import annotations


class SmartDriveError(Exception):
    """Base exception for all smartdrive errors."""


class SmartDriveConfigError(SmartDriveError):
    """Invalid or missing configuration."""


class ChannelError(SmartDriveError):
    """Transient channel failure (connect, send, or unexpected close).

    Absorbed by the connection manager and turned into a reconnect;
    never shown to the operator except as a connectivity indicator.
    """

    def __init__(self, message: str, *, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class ProtocolError(SmartDriveError):
    """Inbound envelope is malformed or cannot be decoded."""

    def __init__(self, message: str, *, message_type: str = "") -> None:
        self.message_type = message_type
        super().__init__(message)


class TelemetryValidationError(SmartDriveError):
    """A value needed to change state is missing or invalid.

    Examples are a zero or non-numeric trip id, or non-finite
    coordinates.  The operation is aborted and state is left unchanged.
    """

    def __init__(self, message: str, *, field: str = "") -> None:
        self.field = field
        super().__init__(message)


class InvalidStateError(SmartDriveError):
    """Operation not allowed in the current state (e.g. trip already active)."""


class PersistenceError(SmartDriveError):
    """The external store rejected a write or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        code: str = "",
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class SessionExpiredError(PersistenceError):
    """Operator session rejected by the backend.

    Fatal for the current session: the client catches this and forces a
    full logout, resetting connection, trip and crash state.
    """
