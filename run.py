"""
Run script for starting the Concierge Relay server.

Defaults come from the same environment settings the application reads, so
``python run.py`` and ``uvicorn concierge_relay.main:app`` behave alike.
Settings are validated before uvicorn starts.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL]
"""

import argparse
import sys

import uvicorn

from concierge_relay.config.logging_config import configure_logging
from concierge_relay.config.settings import get_settings, validate_settings
from concierge_relay.errors import ConfigurationError

settings = get_settings()
logger = configure_logging(settings.log_level, settings.log_format, settings.log_dir)


def parse_args():
    """Parse command line arguments, defaulting to the environment settings."""
    parser = argparse.ArgumentParser(description="Start the Concierge Relay server")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument(
        "--log-level",
        default=settings.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="uvicorn log level",
    )
    return parser.parse_args()


def main():
    args = parse_args()

    try:
        validate_settings(settings)
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {e}")
        sys.exit(1)

    logger.info(f"Starting {settings.environment} server on http://{args.host}:{args.port}")

    uvicorn.run(
        "concierge_relay.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        http="h11",
        access_log=False,
        # Carrier media streams send a frame every 20 ms; keep pings short
        ws_ping_interval=5,
        ws_ping_timeout=20,
        ws_max_size=16 * 1024 * 1024,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
