"""
main.py

Practice test bridge server entry point
"""

import logging
import sys
import traceback

from config import DEFAULT_HOST, DEFAULT_PORT, LOG_FILE

# ── Logging setup ────────────────────────────────────────────────────────────
try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # Log file is locked: console output only
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def run(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    import uvicorn
    from api.app import create_app

    logger.info(f"Starting uvicorn on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="warning")


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("=== Practice Test Engine Started ===")
    try:
        run()
    except KeyboardInterrupt:
        logger.info("Stopped by user.")
    except Exception:
        logger.error(f"Server error:\n{traceback.format_exc()}")
        sys.exit(1)
