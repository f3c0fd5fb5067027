import uvicorn
import os
from logging_config import setup_logging
from constants import HOST, PORT, LOG_LEVEL, LOG_FILE, PING_INTERVAL_SECONDS, PING_TIMEOUT_SECONDS

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    reload = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")
    logger.info(f"Starting CodeSync session server on {HOST}:{PORT}")
    uvicorn.run(
        "app:app" if reload else app,
        host=HOST,
        port=PORT,
        reload=reload,
        # transport-level keepalive; a missed pong closes the socket and runs the disconnect path
        ws_ping_interval=PING_INTERVAL_SECONDS,
        ws_ping_timeout=PING_TIMEOUT_SECONDS - PING_INTERVAL_SECONDS,
    )


if __name__ == "__main__":
    main()
