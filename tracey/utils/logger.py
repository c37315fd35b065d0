"""
Logging infrastructure for Tracey.

Uses Loguru for console and rotating file output, plus a dedicated
delivery log that records every notification attempt and its outcome.
"""

import sys
from typing import Any

from loguru import logger

from tracey.utils.config import get_settings


def setup_logging() -> None:
    """
    Configure application-wide logging.

    Sets up console and file logging with rotation and retention, and a
    separate delivery log filtered on the ``delivery_event`` extra.
    """
    settings = get_settings()
    log_settings = settings.logging

    # Remove default handler
    logger.remove()

    # Security: diagnose=False outside development so stack traces don't dump locals
    enable_diagnose = settings.debug and settings.environment == "development"

    if log_settings.console_output:
        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>",
            level=log_settings.level,
            colorize=True,
            backtrace=True,
            diagnose=enable_diagnose,
        )

    if not log_settings.file_output:
        return

    log_file = log_settings.file_path
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_file,
        format=log_settings.format,
        level=log_settings.level,
        rotation=log_settings.rotation,
        retention=log_settings.retention,
        compression="zip",
        backtrace=True,
        diagnose=enable_diagnose,
        enqueue=True,  # Thread-safe logging
    )

    # Notification delivery trail, kept apart so failed sends can be audited
    delivery_log_path = log_file.parent / "delivery.log"
    logger.add(
        delivery_log_path,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[delivery_event]} | {message}",
        level="INFO",
        filter=lambda record: "delivery_event" in record["extra"],
        rotation="1 week",
        retention="90 days",
        compression="zip",
        enqueue=True,
    )

    logger.info(f"Logging initialized - Level: {log_settings.level}")


def get_logger(name: str) -> Any:
    """
    Get a logger instance with the specified name.

    Args:
        name: The name for the logger (typically __name__)

    Returns:
        A configured logger instance
    """
    return logger.bind(name=name)


def _sanitize_for_logging(data: Any) -> Any:
    """
    Sanitize data before logging to prevent sensitive information exposure.

    Redacts push tokens, API keys, and other credentials.
    """
    if isinstance(data, dict):
        sensitive_keys = {
            "password", "secret", "token", "api_key", "apikey",
            "auth", "credential", "private_key", "id_token",
        }
        return {
            k: "***REDACTED***" if any(s in k.lower() for s in sensitive_keys) else _sanitize_for_logging(v)
            for k, v in data.items()
        }
    elif isinstance(data, list):
        return [_sanitize_for_logging(item) for item in data]
    return data


def delivery_log(event: str, details: dict[str, Any]) -> None:
    """
    Record a notification delivery event.

    Args:
        event: What happened (e.g. "email_sent", "push_failed", "queued")
        details: Match/user/channel context for the event
    """
    sanitized_details = _sanitize_for_logging(details)
    logger.bind(delivery_event=event).info(f"{event} | {sanitized_details}")


# Module-level logger for quick access
log = logger


# Auto-setup on import if settings are available
try:
    setup_logging()
except OSError:
    # Log directory not writable; keep loguru's default stderr sink
    pass
