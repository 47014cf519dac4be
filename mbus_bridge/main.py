"""Main entry point for the M-Bus to MQTT Homie bridge."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Iterable, Optional

from .bridge import Bridge
from .config import Settings, load_settings
from .errors import ConfigurationError

LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("mbus_bridge")


def configure_logging(level: str = "INFO", log_dir: str | None = None) -> None:
    """Console logging, plus combined.log and error.log when ``log_dir`` is set."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=True,
    )
    if not log_dir:
        return

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    root = logging.getLogger()

    combined = logging.FileHandler(directory / "combined.log", encoding="utf-8")
    combined.setFormatter(formatter)
    root.addHandler(combined)

    errors = logging.FileHandler(directory / "error.log", encoding="utf-8")
    errors.setLevel(logging.ERROR)
    errors.setFormatter(formatter)
    root.addHandler(errors)


def _parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Poll M-Bus meters and publish their readings as Homie devices over MQTT",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="dotenv file with the bridge settings (default: .env)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser.parse_args(argv)


def _log_banner(settings: Settings) -> None:
    logger.info("=" * 60)
    logger.info("M-Bus to MQTT Homie Bridge")
    logger.info("=" * 60)
    logger.info(f"M-Bus: {settings.describe_transport()}")
    logger.info(f"Bus addresses: {', '.join(settings.bus_addresses)}")
    logger.info(f"Schedule: {settings.PUBLISH_SCHEDULE}")
    logger.info(f"MQTT Broker: {settings.MQTT_HOST}:{settings.MQTT_PORT}")
    logger.info(f"Homie device: {settings.HOMIE_BASE_TOPIC}/{settings.HOMIE_DEVICE_ID}")


async def main(settings: Settings) -> int:
    """
    Run the bridge until SIGINT or SIGTERM.

    Returns:
        Process exit code, 0 after a clean shutdown
    """
    _log_banner(settings)

    bridge = Bridge(settings)

    # Setup graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler():
        """Handle shutdown signals."""
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bridge.start()
        await shutdown_event.wait()

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1

    finally:
        await bridge.stop()
        logger.info("Goodbye!")

    return 0


def run(argv: Optional[Iterable[str]] = None) -> None:
    """Entry point wrapper for running the async main function."""
    args = _parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ConfigurationError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(str(e))
        sys.exit(1)

    configure_logging(args.log_level or settings.LOG_LEVEL, settings.LOG_DIR)

    try:
        exit_code = asyncio.run(main(settings))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)


if __name__ == "__main__":  # pragma: no cover
    run()
