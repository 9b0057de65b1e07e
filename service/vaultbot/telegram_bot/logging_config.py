"""
Logging configuration for the bot and its services.
"""

import logging
import os
import sys

LOG_FORMAT = '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s'


def setup_logging(level: str | None = None):
    """Setup the telegram_bot logger and the vaultbot service loggers."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    # "telegram_bot" for handlers, "vaultbot" for probe/gate/storage modules
    for name in ("telegram_bot", "vaultbot"):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.propagate = False

    # httpx logs every request at INFO, including the bot token in the URL
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("telegram_bot")


# Global logger instance
bot_logger = setup_logging()
