"""Logging configuration utilities."""

import logging

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every outbound request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Format type ('json' for bare messages collected by the
            platform, 'text' for human-readable lines)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s" if log_format == "json" else TEXT_FORMAT,
        handlers=[logging.StreamHandler()],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured: level={log_level}, format={log_format}")
