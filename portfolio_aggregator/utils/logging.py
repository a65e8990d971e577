"""Logging setup for the engine (loguru)."""

import sys

from loguru import logger

from portfolio_aggregator.config.settings import AggregationSettings

LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss} | {level} | {name}:{function} | {message}"


def configure_logging(settings: AggregationSettings) -> int:
    """
    Replace loguru's default sink with a stderr sink at the configured level.

    Library modules only emit records; applications and scripts call this once
    at startup to decide what is shown.

    Returns:
        The id of the installed sink (pass to `logger.remove` to detach it).
    """
    logger.remove()
    return logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT)
