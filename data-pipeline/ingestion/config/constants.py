"""Pure constants for the ingestion layer. No side effects at import time."""

# === Upstream ===
WHOP_DEPENDENCY = "whop-api"
DEFAULT_WHOP_BASE_URL = "https://api.whop.com/api/v1"
ALLOWED_METHODS = frozenset({"GET"})
DEFAULT_PAGE_SIZE = 100

# === Rate Limiter ===
DEFAULT_REQUESTS_PER_SECOND = 2.0
MAX_CONSECUTIVE_RATE_LIMITS = 3  # Signals before the limiter pauses
RATE_LIMIT_PAUSE_MULTIPLIER = 5  # Pause = min_interval * this
MAX_RATE_LIMIT_PAUSE = 10.0  # seconds

# === Retry ===
MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_MS = 1000
RETRY_JITTER = 0.3  # +/- 30%
DEFAULT_RETRY_AFTER = 5.0  # seconds, when the server hint is unusable

# === Circuit Breaker ===
DEFAULT_CALL_TIMEOUT = 10.0  # seconds
DEFAULT_ERROR_THRESHOLD_PERCENTAGE = 50.0
DEFAULT_RESET_TIMEOUT = 30.0  # seconds
DEFAULT_WINDOW_SIZE = 10  # Calls kept in the rolling window
DEFAULT_VOLUME_THRESHOLD = 5  # Calls needed before the window is evaluated

# === Processing Limits ===
MAX_RECORDS_PER_RUN = 10_000
MAX_PROCESSING_TIME = 1800.0  # 30 minutes
MAX_PAGES = 1000

# === Dead Letter Queue ===
MAX_DLQ_SIZE = 10_000
DLQ_RETENTION_DAYS = 7
DLQ_ALERT_THRESHOLD = 8000
DLQ_EVICTION_RATIO = 0.2  # Oldest share dropped when full
DLQ_SWEEP_INTERVAL = 3600.0  # 1 hour

# === Degradation Gate ===
ANALYSIS_RETRY_AFTER_BREAKER_OPEN = 60  # seconds
ANALYSIS_RETRY_AFTER_DLQ_FULL = 300  # seconds
DEGRADED_DLQ_RATIO = 0.5
