#!/usr/bin/env python3
"""Live monitor for the SmartDrive telemetry channel.

Connects to the websocket bridge with an existing operator session and
prints notifications, connection changes, and periodic live-state
snapshots.  Optionally starts a trip for the duration of the run.

Session values come from the environment:
``SMARTDRIVE_SESSION_ID``, ``SMARTDRIVE_DRIVER_ID``, ``SMARTDRIVE_VEHICLE_ID``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from smartdrive import (  # noqa: E402
    ConnectionState,
    Envelope,
    Notification,
    OperatorSession,
    SmartDriveClient,
    SmartDriveConfig,
    SmartDriveError,
)

_LOG = logging.getLogger("live_monitor")


@dataclass
class MonitorStats:
    started_at: float
    notifications: int = 0
    passthrough_frames: int = 0
    reconnects: int = 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live telemetry from the SmartDrive websocket bridge.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--status-seconds",
        type=int,
        default=5,
        help="Print a live-state snapshot every N seconds.",
    )
    parser.add_argument(
        "--trip",
        action="store_true",
        help="Start a trip after connecting and stop it on exit.",
    )
    parser.add_argument(
        "--no-camera",
        action="store_true",
        help="Do not request the camera stream on connect.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _operator_from_env() -> OperatorSession:
    session_id = os.environ.get("SMARTDRIVE_SESSION_ID", "")
    driver_id = os.environ.get("SMARTDRIVE_DRIVER_ID", "")
    vehicle_id = os.environ.get("SMARTDRIVE_VEHICLE_ID", "1")
    if not session_id or not driver_id.isdigit():
        raise SystemExit("Set SMARTDRIVE_SESSION_ID and SMARTDRIVE_DRIVER_ID to run the monitor.")
    return OperatorSession(session_id=session_id, driver_id=int(driver_id), vehicle_id=int(vehicle_id))


def _print_snapshot(client: SmartDriveClient) -> None:
    state = client.live_state
    gps = client.gps_monitor.status()
    position = "-" if state.position is None else f"{state.latitude:.6f},{state.longitude:.6f}"
    print(
        f"[monitor] conn={client.connection_state} speed={state.speed:.1f} accel={state.acceleration:.2f} "
        f"pos={position} gps={gps} brakes={state.hard_brake_count} accels={state.rapid_accel_count} "
        f"lanes={state.lane_departures} trip={state.trip_id or '-'}",
    )
    info = client.tracker.active_info()
    if info is not None:
        print(
            f"[monitor]   trip {info.trip_id}: {info.distance_km:.3f} km in {info.duration_s:.0f}s "
            f"max={info.max_speed:.1f} waypoints={info.waypoint_count}",
        )


async def _run(args: argparse.Namespace) -> int:
    overrides = {"auto_start_camera": False} if args.no_camera else {}
    config = SmartDriveConfig.from_env(**overrides)
    operator = _operator_from_env()
    stats = MonitorStats(started_at=time.time())
    stop_event = asyncio.Event()

    def on_notification(notification: Notification) -> None:
        stats.notifications += 1
        print(f"[monitor] {notification.level.upper()}: {notification.message}")

    def on_connection_state(state: ConnectionState) -> None:
        if state is ConnectionState.RECONNECT_WAIT:
            stats.reconnects += 1
        print(f"[monitor] connection -> {state}")

    def on_passthrough(_envelope: Envelope) -> None:
        stats.passthrough_frames += 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with SmartDriveClient(
        config,
        operator=operator,
        notifier=on_notification,
        on_connection_state=on_connection_state,
        on_passthrough=on_passthrough,
    ) as client:
        client.connect()
        if args.trip:
            client.start_trip()

        while not stop_event.is_set():
            if args.duration > 0 and time.time() - stats.started_at >= args.duration:
                print(f"[monitor] Reached --duration={args.duration}s, stopping.")
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(1, args.status_seconds))
            except TimeoutError:
                _print_snapshot(client)

        try:
            await client.logout()
        except SmartDriveError as exc:
            _LOG.warning("Logout failed: %s", exc)

    runtime = time.time() - stats.started_at
    print("[monitor] Summary")
    print(f"[monitor]   runtime_s      : {runtime:.1f}")
    print(f"[monitor]   notifications  : {stats.notifications}")
    print(f"[monitor]   frames         : {stats.passthrough_frames}")
    print(f"[monitor]   reconnects     : {stats.reconnects}")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(_main())
