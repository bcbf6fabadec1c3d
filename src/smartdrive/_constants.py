"""Internal constants shared across the library."""

WS_URL = "ws://localhost:8081"
API_URL = "http://localhost:8080/"
USER_AGENT = "smartdrive-live"

# ------------------------------------------------------------------
# Channel liveness (seconds)
# ------------------------------------------------------------------

HEARTBEAT_INTERVAL_S = 30.0
RECONNECT_BASE_DELAY_S = 1.0
RECONNECT_MAX_DELAY_S = 30.0
OUTBOUND_QUEUE_CAPACITY = 100

# Close code / reason pair that marks an operator logout.
LOGOUT_CLOSE_CODE = 1000
LOGOUT_CLOSE_REASON = "User logout"

# ------------------------------------------------------------------
# Trip tracking
# ------------------------------------------------------------------

EARTH_RADIUS_KM = 6371.0
# Minimum movement (km) accepted as a new waypoint, roughly 1 m.
JITTER_THRESHOLD_KM = 0.001
TRIP_SYNC_INTERVAL_S = 30.0
TRIP_SYNC_BATCH_SIZE = 10
TRIP_DURATION_TICK_S = 1.0

# ------------------------------------------------------------------
# Crash escalation
# ------------------------------------------------------------------

CRASH_COUNTDOWN_TICKS = 10
CRASH_TICK_INTERVAL_S = 1.0

# ------------------------------------------------------------------
# GPS health
# ------------------------------------------------------------------

# ~11 m in both axes.
GPS_STUCK_DELTA_DEG = 0.0001
# Consecutive unchanged observations tolerated before flagging a stuck sensor.
GPS_STUCK_LIMIT = 30
GPS_STALE_AFTER_S = 5.0
GPS_HEALTH_CHECK_INTERVAL_S = 2.0

# Backend response code for an expired or unknown operator session.
SESSION_EXPIRED_CODES: frozenset[str] = frozenset({"UNAUTHORIZED", "SESSION_ERROR"})
