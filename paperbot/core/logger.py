# paperbot/core/logger.py
import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configures process-wide logging to stdout."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s.%(msecs)03dZ [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )
