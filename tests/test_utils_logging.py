"""
Tests for portfolio_aggregator/utils/logging.py

These tests verify that configure_logging installs a single sink at the
configured level.
"""

from loguru import logger

from portfolio_aggregator.config.settings import AggregationSettings
from portfolio_aggregator.utils.logging import configure_logging


def test_configure_logging_filters_below_level(capsys):
    """Test that records below the configured level are dropped."""
    sink_id = configure_logging(AggregationSettings(log_level="INFO"))
    try:
        logger.debug("hidden detail")
        logger.info("visible summary")
    finally:
        logger.remove(sink_id)

    captured = capsys.readouterr().err
    assert "visible summary" in captured
    assert "hidden detail" not in captured
    assert "| INFO |" in captured
