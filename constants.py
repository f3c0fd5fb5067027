import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Liveness: a probe is sent after PING_INTERVAL of silence, the connection is dead after PING_TIMEOUT
PING_INTERVAL_SECONDS = float(os.getenv("PING_INTERVAL_SECONDS", 10))
PING_TIMEOUT_SECONDS = float(os.getenv("PING_TIMEOUT_SECONDS", 20))

SEND_QUEUE_SIZE = int(os.getenv("SEND_QUEUE_SIZE", 256))
MAX_ROOM_ID_LENGTH = int(os.getenv("MAX_ROOM_ID_LENGTH", 128))
MAX_USERNAME_LENGTH = int(os.getenv("MAX_USERNAME_LENGTH", 64))

RELAY_ENABLED = os.getenv("RELAY_ENABLED", "false").lower() in ("1", "true", "yes")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Client reconnection
RECONNECT_ATTEMPTS = int(os.getenv("RECONNECT_ATTEMPTS", 5))
RECONNECT_DELAY = float(os.getenv("RECONNECT_DELAY", 1.0))
RECONNECT_DELAY_MAX = float(os.getenv("RECONNECT_DELAY_MAX", 10.0))
