"""
Utility modules for Tracey.

This package contains shared utilities used across the application:
- config: Configuration management
- logger: Logging infrastructure
- constants: Application-wide constants
"""

from tracey.utils.config import (
    AppSettings,
    get_settings,
    reload_settings,
    ROOT_DIR,
    PACKAGE_DIR,
    LOGS_DIR,
)
from tracey.utils.constants import (
    APP_NAME,
    APP_DISPLAY_NAME,
    VERSION,
    MATCH_THRESHOLD,
    MAX_RETRIES,
    ItemStatus,
    ItemType,
    NotificationAudience,
    NotificationChannel,
)
from tracey.utils.logger import (
    setup_logging,
    get_logger,
    delivery_log,
    log,
)

__all__ = [
    # Config
    "AppSettings",
    "get_settings",
    "reload_settings",
    "ROOT_DIR",
    "PACKAGE_DIR",
    "LOGS_DIR",
    # Constants
    "APP_NAME",
    "APP_DISPLAY_NAME",
    "VERSION",
    "MATCH_THRESHOLD",
    "MAX_RETRIES",
    "ItemStatus",
    "ItemType",
    "NotificationAudience",
    "NotificationChannel",
    # Logger
    "setup_logging",
    "get_logger",
    "delivery_log",
    "log",
]
