"""Connection manager: keeps one logical channel alive.

Owns:
- the channel state machine (connect, backoff, deliberate shutdown)
- the heartbeat probe while connected
- the bounded outbound queue used while offline

Transport callbacks are turned into explicit :data:`ChannelEvent` values
and fed through :meth:`ConnectionManager.handle_event`, the single place
where state transitions happen.  Tests drive that method directly.
"""

from __future__ import annotations

import enum
import json
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from smartdrive._constants import LOGOUT_CLOSE_CODE, LOGOUT_CLOSE_REASON
from smartdrive._scheduler import Scheduler, TaskHandle
from smartdrive._ws import Channel
from smartdrive.config import SmartDriveConfig
from smartdrive.models.commands import OutboundMessage, PingMessage

_logger = logging.getLogger(__name__)

# Cap on the backoff exponent. The delay is clamped long before this and
# attempts themselves are unbounded.
_MAX_BACKOFF_EXPONENT = 32


class ConnectionState(enum.StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_WAIT = "reconnect_wait"
    SHUTTING_DOWN = "shutting_down"


# ------------------------------------------------------------------
# Channel events
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelOpened:
    channel: Channel


@dataclass(frozen=True)
class ChannelReceived:
    text: str


@dataclass(frozen=True)
class ChannelFailed:
    """Connect attempt failed; the cause is not classified."""

    reason: str


@dataclass(frozen=True)
class ChannelClosed:
    code: int | None
    reason: str = ""


ChannelEvent = ChannelOpened | ChannelReceived | ChannelFailed | ChannelClosed

Connector = Callable[[str], Awaitable[Channel]]


def compute_backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before reconnect *attempt* (1-based): ``min(base * 2**(attempt-1), cap)``."""
    exponent = min(max(attempt - 1, 0), _MAX_BACKOFF_EXPONENT)
    return min(base * (2**exponent), cap)


def _encode(message: Mapping[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def _describe(message: Mapping[str, Any]) -> str:
    return str(message.get("command") or message.get("type") or "message")


# ------------------------------------------------------------------
# Outbound queue
# ------------------------------------------------------------------


class OutboundQueue:
    """FIFO of commands awaiting a connected channel.

    Holds at most ``capacity`` messages, counting the one currently being
    flushed.  When full, new submissions are refused and existing entries
    are kept.  A message whose send failed goes back to the front so the
    original order of untransmitted messages is preserved.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._items: deque[dict[str, Any]] = deque()
        self._in_flight = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._items) + self._in_flight >= self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(list(self._items))

    def offer(self, message: dict[str, Any]) -> bool:
        if self.is_full:
            return False
        self._items.append(message)
        return True

    def take(self) -> dict[str, Any]:
        """Remove the head for transmission; its slot stays reserved until settled."""
        message = self._items.popleft()
        self._in_flight += 1
        return message

    def ack(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)

    def restore(self, message: dict[str, Any]) -> None:
        self._in_flight = max(0, self._in_flight - 1)
        self._items.appendleft(message)

    def discard(self, predicate: Callable[[dict[str, Any]], bool]) -> int:
        """Remove queued messages matching *predicate*; the in-flight one is kept."""
        kept = [message for message in self._items if not predicate(message)]
        removed = len(self._items) - len(kept)
        self._items = deque(kept)
        return removed

    def clear(self) -> None:
        self._items.clear()
        self._in_flight = 0


# ------------------------------------------------------------------
# Manager
# ------------------------------------------------------------------


class ConnectionManager:
    """Owns the channel, its state, the reconnect counter, and the outbound queue."""

    def __init__(
        self,
        config: SmartDriveConfig,
        *,
        scheduler: Scheduler,
        connector: Connector,
        on_message: Callable[[str], None],
        on_state_change: Callable[[ConnectionState], None] | None = None,
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._connector = connector
        self._on_message = on_message
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._channel: Channel | None = None
        self._generation = 0
        self._queue = OutboundQueue(config.queue_capacity)
        self._flushing = False
        self._flush_retry_handle: TaskHandle | None = None

        self._reconnect_attempts = 0
        self._last_reconnect_delay: float | None = None
        self._reconnect_handle: TaskHandle | None = None
        self._heartbeat_handle: TaskHandle | None = None
        self._last_heartbeat_ack: float | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def last_reconnect_delay(self) -> float | None:
        return self._last_reconnect_delay

    @property
    def queue(self) -> OutboundQueue:
        return self._queue

    @property
    def last_heartbeat_ack(self) -> float | None:
        """Scheduler time of the last ``pong``, if any."""
        return self._last_heartbeat_ack

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the channel unless it is already open or opening."""
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            _logger.debug("Connect ignored in state=%s", self._state)
            return
        self._cancel_reconnect()
        self._generation += 1
        self._set_state(ConnectionState.CONNECTING)
        _logger.debug(
            "Channel connect requested url=%s attempt=%d",
            self._config.ws_url,
            self._reconnect_attempts,
        )
        self._scheduler.spawn(self._open(self._generation))

    def send(self, message: OutboundMessage | Mapping[str, Any]) -> bool:
        """Queue a message and start a flush if connected.

        Every message goes through the queue, so the flush loop is the only
        writer and a failed message is retried before anything sent after
        it.  Returns ``False`` only when the queue is full and the message
        was dropped.  This never blocks.
        """
        wire = message.to_wire() if isinstance(message, OutboundMessage) else dict(message)
        if not self._queue.offer(wire):
            _logger.warning(
                "Outbound queue full (%d); dropping %s",
                self._queue.capacity,
                _describe(wire),
            )
            return False
        _logger.debug("Queued %s (%d pending)", _describe(wire), len(self._queue))
        if self._state is ConnectionState.CONNECTED and self._channel is not None and not self._flushing:
            self._scheduler.spawn(self._flush_queue())
        return True

    def discard_queued(self, command: str) -> int:
        """Drop untransmitted messages for *command*; returns how many were removed."""
        removed = self._queue.discard(lambda wire: wire.get("command") == command)
        if removed:
            _logger.info("Discarded %d queued %s message(s)", removed, command)
        return removed

    def shutdown(self, reason: str = LOGOUT_CLOSE_REASON) -> None:
        """Deliberately close the channel; no reconnect follows."""
        channel = self._begin_shutdown()
        if channel is not None:
            self._scheduler.spawn(self._close_channel(channel, reason))

    async def aclose(self, reason: str = LOGOUT_CLOSE_REASON) -> None:
        """Like :meth:`shutdown`, but waits for the close handshake."""
        channel = self._begin_shutdown()
        if channel is not None:
            await self._close_channel(channel, reason)

    def note_heartbeat_ack(self) -> None:
        self._last_heartbeat_ack = self._scheduler.now()

    def schedule_reconnect(self) -> float:
        """Arm the next reconnect attempt and return its delay in seconds."""
        self._reconnect_attempts += 1
        delay = compute_backoff_delay(
            self._reconnect_attempts,
            self._config.reconnect_base_delay,
            self._config.reconnect_max_delay,
        )
        self._last_reconnect_delay = delay
        _logger.info("Reconnecting in %.0fs (attempt %d)", delay, self._reconnect_attempts)
        self._cancel_reconnect()
        self._reconnect_handle = self._scheduler.call_later(delay, self._reconnect_due)
        return delay

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def handle_event(self, event: ChannelEvent) -> None:
        """Apply a channel event to the state machine."""
        if isinstance(event, ChannelOpened):
            self._on_opened(event.channel)
        elif isinstance(event, ChannelReceived):
            self._on_received(event.text)
        elif isinstance(event, ChannelFailed):
            self._on_failed(event.reason)
        elif isinstance(event, ChannelClosed):
            self._on_closed(event.code, event.reason)

    def _on_opened(self, channel: Channel) -> None:
        if self._state is not ConnectionState.CONNECTING:
            _logger.debug("Discarding channel opened in state=%s", self._state)
            self._scheduler.spawn(self._close_channel(channel, "Superseded"))
            return
        self._channel = channel
        self._reconnect_attempts = 0
        _logger.info("Channel connected url=%s", self._config.ws_url)
        self._start_heartbeat()
        if self._queue:
            self._scheduler.spawn(self._flush_queue())
        self._set_state(ConnectionState.CONNECTED)

    def _on_received(self, text: str) -> None:
        try:
            self._on_message(text)
        except Exception:
            _logger.warning("Inbound message handler failed", exc_info=True)

    def _on_failed(self, reason: str) -> None:
        if self._state is not ConnectionState.CONNECTING:
            _logger.debug("Ignoring connect failure in state=%s: %s", self._state, reason)
            return
        _logger.warning("Channel connect failed: %s", reason)
        self._channel = None
        self._set_state(ConnectionState.RECONNECT_WAIT)
        self.schedule_reconnect()

    def _on_closed(self, code: int | None, reason: str) -> None:
        self._stop_heartbeat()
        self._cancel_flush_retry()
        self._channel = None
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        if code == LOGOUT_CLOSE_CODE and reason == LOGOUT_CLOSE_REASON:
            _logger.info("Channel closed due to logout, not reconnecting")
            self._cancel_reconnect()
            self._set_state(ConnectionState.SHUTTING_DOWN)
            return
        if self._state is not ConnectionState.CONNECTED:
            _logger.debug("Ignoring close in state=%s", self._state)
            return
        _logger.warning("Channel closed unexpectedly code=%s reason=%s", code, reason)
        self._set_state(ConnectionState.RECONNECT_WAIT)
        self.schedule_reconnect()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        _logger.debug("Connection state %s -> %s", previous, state)
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                _logger.debug("on_state_change callback failed", exc_info=True)

    def _begin_shutdown(self) -> Channel | None:
        self._generation += 1
        self._cancel_reconnect()
        self._cancel_flush_retry()
        self._stop_heartbeat()
        self._queue.clear()
        channel = self._channel
        self._channel = None
        self._set_state(ConnectionState.SHUTTING_DOWN)
        return channel

    def _reconnect_due(self) -> None:
        self._reconnect_handle = None
        if self._state is not ConnectionState.RECONNECT_WAIT:
            return
        _logger.debug("Attempting reconnection (attempt %d)", self._reconnect_attempts)
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        if self._config.heartbeat_interval > 0:
            self._heartbeat_handle = self._scheduler.call_every(
                self._config.heartbeat_interval,
                self._send_heartbeat,
            )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_handle is not None:
            self._heartbeat_handle.cancel()
            self._heartbeat_handle = None

    def _send_heartbeat(self) -> None:
        channel = self._channel
        if self._state is not ConnectionState.CONNECTED or channel is None:
            return
        ping = PingMessage(timestamp=int(time.time() * 1000))
        self._scheduler.spawn(self._heartbeat_probe(channel, ping))

    async def _heartbeat_probe(self, channel: Channel, ping: PingMessage) -> None:
        try:
            await channel.send(_encode(ping.to_wire()))
        except Exception as exc:
            _logger.warning("Heartbeat send failed: %s", exc)

    # ------------------------------------------------------------------
    # I/O coroutines
    # ------------------------------------------------------------------

    async def _open(self, generation: int) -> None:
        try:
            channel = await self._connector(self._config.ws_url)
        except Exception as exc:
            if generation == self._generation:
                self.handle_event(ChannelFailed(reason=str(exc) or type(exc).__name__))
            return
        if generation != self._generation:
            await self._close_channel(channel, "Superseded")
            return
        self.handle_event(ChannelOpened(channel))
        if self._channel is channel:
            await self._read_loop(channel)

    async def _read_loop(self, channel: Channel) -> None:
        try:
            async for text in channel.messages():
                if self._channel is not channel:
                    return
                self.handle_event(ChannelReceived(text))
        except Exception as exc:
            if self._channel is channel:
                self.handle_event(ChannelClosed(code=channel.close_code, reason=str(exc)))
            return
        if self._channel is channel:
            self.handle_event(ChannelClosed(code=channel.close_code, reason=channel.close_reason))

    async def _flush_queue(self) -> None:
        if self._flushing:
            return
        self._flushing = True
        sent = 0
        failed = False
        try:
            while self._queue and self._state is ConnectionState.CONNECTED:
                channel = self._channel
                if channel is None:
                    break
                wire = self._queue.take()
                try:
                    await channel.send(_encode(wire))
                except Exception as exc:
                    if self._state is ConnectionState.SHUTTING_DOWN:
                        self._queue.ack()
                        break
                    self._queue.restore(wire)
                    _logger.warning(
                        "Failed to send %s (%d still queued): %s",
                        _describe(wire),
                        len(self._queue),
                        exc,
                    )
                    failed = True
                    break
                self._queue.ack()
                _logger.debug("Sent %s", _describe(wire))
                sent += 1
        finally:
            self._flushing = False
        if failed and self._state is ConnectionState.CONNECTED:
            self._schedule_flush_retry()
        elif not self._queue and sent:
            _logger.debug("All queued messages flushed (%d sent)", sent)

    def _schedule_flush_retry(self) -> None:
        self._cancel_flush_retry()
        delay = self._config.reconnect_base_delay
        _logger.debug("Retrying send of %d queued message(s) in %.0fs", len(self._queue), delay)
        self._flush_retry_handle = self._scheduler.call_later(delay, self._flush_retry_due)

    def _flush_retry_due(self) -> None:
        self._flush_retry_handle = None
        if self._state is ConnectionState.CONNECTED and self._queue:
            self._scheduler.spawn(self._flush_queue())

    def _cancel_flush_retry(self) -> None:
        if self._flush_retry_handle is not None:
            self._flush_retry_handle.cancel()
            self._flush_retry_handle = None

    async def _close_channel(self, channel: Channel, reason: str) -> None:
        try:
            await channel.close(code=LOGOUT_CLOSE_CODE, reason=reason)
        except Exception:
            _logger.debug("Channel close failed", exc_info=True)
