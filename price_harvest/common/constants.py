"""Application constants."""

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)
COMMANDS = ("scrape", "complete", "status")
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
EARTH_RADIUS_KM = 6371.0
PRICE_DECIMALS = 4
DISTANCE_DECIMALS = 2
JSON_LOG_FIELDS = (
    "timestamp",
    "session_id",
    "period",
    "batch",
    "location_id",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "error_code",
    "message",
)
