from __future__ import annotations

from smartdrive._scheduler import ManualScheduler
from smartdrive.gps_health import GPSHealthMonitor
from smartdrive.models.gps_health import GpsHealthStatus
from smartdrive.notifications import Notification


def _monitor() -> tuple[GPSHealthMonitor, ManualScheduler, list[Notification]]:
    scheduler = ManualScheduler()
    notifications: list[Notification] = []
    monitor = GPSHealthMonitor(scheduler=scheduler, notifier=notifications.append)
    return monitor, scheduler, notifications


def test_stuck_only_after_more_than_thirty_unchanged_samples() -> None:
    monitor, _, notifications = _monitor()
    monitor.observe(31.5204, 74.3587)

    for _ in range(30):
        monitor.observe(31.52041, 74.35871)
    assert monitor.is_stuck is False

    monitor.observe(31.5204, 74.3587)
    assert monitor.is_stuck is True
    assert monitor.status() is GpsHealthStatus.STUCK
    assert len(notifications) == 1


def test_stuck_clears_on_first_real_movement() -> None:
    monitor, _, _ = _monitor()
    for _ in range(40):
        monitor.observe(31.5204, 74.3587)
    assert monitor.is_stuck is True

    monitor.observe(31.5214, 74.3587)

    assert monitor.is_stuck is False
    assert monitor.record.stuck_count == 0
    assert monitor.status() is GpsHealthStatus.OK


def test_stuck_notification_is_sent_once_per_episode() -> None:
    monitor, _, notifications = _monitor()
    for _ in range(50):
        monitor.observe(31.5204, 74.3587)

    assert len(notifications) == 1


def test_invalid_coordinates_are_ignored() -> None:
    monitor, _, _ = _monitor()

    monitor.observe(0.0, 0.0)
    monitor.observe(float("nan"), 74.0)

    assert monitor.record.update_count == 0
    assert monitor.status() is GpsHealthStatus.NO_DATA


def test_staleness_is_reported_separately_from_stuck() -> None:
    monitor, scheduler, _ = _monitor()
    assert monitor.staleness() is None

    monitor.observe(31.5204, 74.3587)
    scheduler.advance(4.0)
    assert monitor.staleness() == 4.0
    assert monitor.is_stale() is False

    scheduler.advance(2.0)
    assert monitor.is_stale() is True
    assert monitor.is_stuck is False
    assert monitor.status() is GpsHealthStatus.STALE


def test_health_check_notifies_once_when_data_stops() -> None:
    monitor, scheduler, notifications = _monitor()
    monitor.start()
    monitor.observe(31.5204, 74.3587)

    scheduler.advance(4.0)
    assert notifications == []

    scheduler.advance(2.0)
    assert len(notifications) == 1
    assert "disconnected" in notifications[0].message

    scheduler.advance(10.0)
    assert len(notifications) == 1

    monitor.observe(31.5214, 74.3587)
    scheduler.advance(2.0)
    assert monitor.check() is GpsHealthStatus.OK

    monitor.stop()
    assert scheduler.active_timers == 0


def test_reset_forgets_history() -> None:
    monitor, _, _ = _monitor()
    monitor.observe(31.5204, 74.3587)

    monitor.reset()

    assert monitor.record.update_count == 0
    assert monitor.status() is GpsHealthStatus.NO_DATA
