"""Runtime configuration read from the environment."""
import os

# CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Credentials
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-please-0123456789")
JWT_ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "3600"))
BROADCAST_SECRET = os.getenv("BROADCAST_SECRET", "server-broadcast-secret")

# Occupancy limits
MAX_CONNECTIONS = int(os.getenv("MAX_CONNECTIONS", "3"))
ADMIN_LIMIT = int(os.getenv("ADMIN_LIMIT", "1"))
REGULAR_USER_LIMIT = int(os.getenv("REGULAR_USER_LIMIT", "2"))

# Playback
DEFAULT_MEDIA_ID = os.getenv("DEFAULT_MEDIA_ID", "dQw4w9WgXcQ")
SYNC_DEBOUNCE_SECONDS = int(os.getenv("SYNC_DEBOUNCE_MS", "100")) / 1000

# Delays (seconds)
INITIAL_SYNC_DELAY = 0.2
CONTROLLER_SYNC_DELAY = 2.0
SEEK_RESYNC_DELAY = 2.0
TEARDOWN_DELAY = 5.0
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "10"))

DISPLAY_NAME_MAX_LENGTH = 20
