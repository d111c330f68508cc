"""Application entry point."""

import asyncio
import logging
import signal
import sys

from healtone.config import get_config
from healtone.payments.server import run_server

logger = logging.getLogger(__name__)


def main() -> None:
    """Load config, configure logging and serve until SIGTERM/SIGINT."""
    try:
        config = get_config()
    except Exception as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Configuration loaded: env={config.env}")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        loop.run_until_complete(run_server(config, shutdown_event=shutdown_event))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Server failed: {e}")
        sys.exit(1)
    finally:
        loop.close()
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
