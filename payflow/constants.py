"""Default values shared across the engine."""

DEFAULT_TIMEOUT_HOURS = 24.0
DEFAULT_SYSTEM_ACTOR = "system"
DEFAULT_ADMIN_ROLE = "ORG_ADMIN"
DEFAULT_BASE_URL = "http://localhost:3000"
SECONDS_PER_HOUR = 3600.0
