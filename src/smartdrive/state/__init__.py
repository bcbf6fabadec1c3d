"""State layer.

:class:`LiveState` is the single source of truth the UI renders from;
:class:`PendingCommands` tracks tentative state until the backend confirms.
"""

from smartdrive.state.live import LiveState
from smartdrive.state.pending import PendingCommand, PendingCommands, PendingKind

__all__ = ["LiveState", "PendingCommand", "PendingCommands", "PendingKind"]
