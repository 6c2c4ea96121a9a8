"""
Constants and configuration values for feed scoring, caching and admission.
"""

# Quality Score
QUALITY_SCORE_MIN = 0
QUALITY_SCORE_MAX = 100
DEFAULT_QUALITY_SCORE = 50  # Unknown content starts neutral
DWELL_BONUS_THRESHOLD_MS = 3000  # Dwell above this earns the variant bonus
ACTIVE_USER_LIKES = 5  # Recent likes above this earn a flat bonus
ACTIVE_USER_BONUS = 2

# User Weight
USER_WEIGHT_MIN = 0.1
USER_WEIGHT_MAX = 2.0
REPUTATION_BASE = 0.7
REPUTATION_MAX_MULTIPLIER = 1.5
NEUTRAL_POSITIVE_RATE = 0.5  # Users without history are neither boosted nor penalized
RECENT_LIKES_WINDOW = 3600  # 1 hour

# Fixed adjustment applied to cached copies when no scorer result is supplied
CACHE_LIKE_ADJUSTMENT = 5
CACHE_DISLIKE_ADJUSTMENT = -8

# Experiment
ASSIGNMENT_KEY_PREFIX = "ab_test:"

# Event Log
EVENT_LOG_MAX_EVENTS = 10000
EVENT_MAX_AGE = 3600  # 1 hour
EVENT_SWEEP_INTERVAL = 3600
SESSION_IDLE_TIMEOUT = 1800  # 30 minutes
EVENT_QUERY_LIMIT = 100  # Events returned per API listing

# Rate Limiting (Fixed window anchored at first request)
RATE_LIMIT_MAX_REQUESTS = 20
RATE_LIMIT_WINDOW_MS = 3_600_000  # 1 hour
RATE_LIMIT_HISTORY_SIZE = 50
RATE_LIMIT_KEY_PREFIX = "ratelimit:"
RATE_LIMIT_MESSAGE = "Hourly generation limit reached, please try again later"

# Content Cache
MEMORY_CACHE_TTL = 3600  # 60 minutes
MEMORY_CACHE_FLUSH_INTERVAL = 7200  # Full flush every 2 hours
DURABLE_CACHE_TTL = 1800  # 30 minutes
DURABLE_CACHE_DIR = ".cache/content"
DURABLE_CACHE_MAX_FILES = 5000
CACHE_KEY_PREFIX = "cache:"
CACHE_MAX_ITEMS = 25
MIN_INTEREST_QUALITY = 60

# Users
USER_HISTORY_SIZE = 100
LONG_DWELL_MS = 3000
USER_ID_MIN_LENGTH = 3
USER_ID_MAX_LENGTH = 128
USER_ID_PATTERN = r"^[a-zA-Z0-9_\-@.]+$"

# Generation
GENERATION_DEFAULT_COUNT = 3
GENERATION_MAX_COUNT = 10
GENERATION_TIMEOUT = 90.0  # Overall budget per generate() call
OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "gemma3:4b"
OLLAMA_HEALTH_TIMEOUT = 5.0
LLM_TEMPERATURE = 0.8
LLM_TOP_P = 0.9
LLM_NUM_PREDICT = 800
LLM_REPEAT_PENALTY = 1.1
LLM_MAX_RETRIES = 3
LLM_RETRY_BACKOFF_BASE = 1.0
LLM_RETRY_BACKOFF_MAX = 8.0
LLM_HTTP_CONNECT_TIMEOUT = 10.0
LLM_HTTP_READ_TIMEOUT = 60.0
LLM_HTTP_WRITE_TIMEOUT = 10.0
LLM_HTTP_POOL_TIMEOUT = 5.0
LLM_MIN_REQUEST_INTERVAL = 1.0  # Seconds between requests to the local model
CONTENT_MAX_CHARS = 280
MOCK_QUALITY_BASE = 75
MOCK_QUALITY_SPREAD = 25
