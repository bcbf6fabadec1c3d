"""Tentative local state awaiting backend confirmation.

Commands such as ``start_trip`` and ``toggle_camera`` only take effect once
the backend answers (``trip_started`` / ``camera_status``).  Until then the
client records a :class:`PendingCommand`; it is resolved by the matching
confirmation, rejected by a related ``error`` envelope, or expires after a
timeout so the UI never stays in a "starting…" state forever.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from smartdrive._scheduler import Scheduler, TaskHandle

_logger = logging.getLogger(__name__)


class PendingKind(enum.StrEnum):
    TRIP_START = "trip_start"
    CAMERA = "camera"


@dataclass
class PendingCommand:
    kind: PendingKind
    value: Any
    issued_at: float
    handle: TaskHandle | None = field(default=None, repr=False)


class PendingCommands:
    """At most one pending command per :class:`PendingKind`."""

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        timeout: float,
        on_expired: Callable[[PendingCommand], None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._timeout = timeout
        self._on_expired = on_expired
        self._pending: dict[PendingKind, PendingCommand] = {}

    def begin(self, kind: PendingKind, value: Any = None) -> PendingCommand:
        """Record a tentative command, replacing any previous one of the same kind."""
        previous = self._pending.pop(kind, None)
        if previous is not None and previous.handle is not None:
            previous.handle.cancel()

        command = PendingCommand(kind=kind, value=value, issued_at=self._scheduler.now())
        if self._timeout > 0:
            command.handle = self._scheduler.call_later(self._timeout, lambda: self._expire(command))
        self._pending[kind] = command
        _logger.debug("Pending %s started value=%r", kind, value)
        return command

    def get(self, kind: PendingKind) -> PendingCommand | None:
        return self._pending.get(kind)

    def is_pending(self, kind: PendingKind) -> bool:
        return kind in self._pending

    def resolve(self, kind: PendingKind) -> PendingCommand | None:
        """Drop the pending command (confirmed or rejected) and return it."""
        command = self._pending.pop(kind, None)
        if command is not None and command.handle is not None:
            command.handle.cancel()
        return command

    def clear(self) -> None:
        for kind in list(self._pending):
            self.resolve(kind)

    def _expire(self, command: PendingCommand) -> None:
        if self._pending.get(command.kind) is not command:
            return
        del self._pending[command.kind]
        _logger.warning("Pending %s not confirmed within %.1fs", command.kind, self._timeout)
        if self._on_expired is not None:
            self._on_expired(command)
