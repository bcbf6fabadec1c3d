"""User-visible notifications.

Conditions that change what the operator can rely on (trip not saved,
crash escalation not delivered, GPS stuck, session expired) are surfaced
as :class:`Notification` objects through a notifier callback supplied by
the UI.  Everything else is only logged.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

_logger = logging.getLogger(__name__)


class NotificationLevel(enum.StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str


Notifier = Callable[[Notification], None]


def log_notifier(notification: Notification) -> None:
    """Fallback notifier that writes to the library logger."""
    level = logging.WARNING if notification.level in (NotificationLevel.WARNING, NotificationLevel.ERROR) else logging.INFO
    _logger.log(level, "[%s] %s", notification.level, notification.message)


def emit(notifier: Notifier | None, level: NotificationLevel, message: str) -> None:
    """Deliver a notification; a failing UI callback must never break the caller."""
    if notifier is None:
        notifier = log_notifier
    try:
        notifier(Notification(level=level, message=message))
    except Exception:
        _logger.debug("Notifier callback failed", exc_info=True)
