"""
Configuration settings for the aggregation engine.

**Conceptual**: The engine itself is a pure function library, but a few of its
conventions are deployment choices rather than laws of nature: which cycle
status counts as "finished", which status marks a still-open position, and
how chatty logging is. These live in one strongly-typed, immutable settings
object.

**How settings reach the engine**: Engine functions take an optional
`settings` argument and fall back to `DEFAULT_SETTINGS` (plain defaults, no
environment access). Applications that want environment-driven behaviour call
`get_settings()` once and pass the result down explicitly; nothing in the
engine reads the environment or caches settings globally.

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# .env at the project root (dev/local environments)
ENV_PATH = Path(__file__).parent.parent.parent / ".env"

VALID_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AggregationSettings:
    """
    Settings for metric computation and summarization.

    Attributes:
        finished_status: Cycle status marking a closed trade. Only closed trades
                         contribute intervals, equity events and risk.
        open_status: Cycle status marking a position that is still running;
                     its risk is reported separately as open-position risk.
        log_level: Minimum loguru level for `configure_logging`.
    """
    finished_status: str = "FINISHED"
    open_status: str = "STARTED"
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate settings after initialization."""
        if not self.finished_status:
            raise ValueError("finished_status must be a non-empty status name")
        if not self.open_status:
            raise ValueError("open_status must be a non-empty status name")
        if self.finished_status == self.open_status:
            raise ValueError(
                f"finished_status and open_status must differ, both are: {self.finished_status}"
            )
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}, got: {self.log_level}"
            )

    @classmethod
    def from_env(cls) -> "AggregationSettings":
        """
        Load aggregation settings from environment variables.

        **Environment variables** (all optional):
          - AGGREGATION_FINISHED_STATUS: defaults to "FINISHED".
          - AGGREGATION_OPEN_STATUS: defaults to "STARTED".
          - AGGREGATION_LOG_LEVEL: loguru level name, defaults to "WARNING".

        Returns:
            AggregationSettings object with values loaded from environment.

        Raises:
            ValueError: If any variable is present but malformed.

        Usage example:
            >>> # In .env file:
            >>> # AGGREGATION_LOG_LEVEL=DEBUG
            >>>
            >>> settings = AggregationSettings.from_env()
            >>> settings.log_level  # "DEBUG"
        """
        finished_status = os.getenv("AGGREGATION_FINISHED_STATUS", "FINISHED").strip().upper()
        open_status = os.getenv("AGGREGATION_OPEN_STATUS", "STARTED").strip().upper()
        log_level = os.getenv("AGGREGATION_LOG_LEVEL", "WARNING").strip().upper()

        return cls(
            finished_status=finished_status,
            open_status=open_status,
            log_level=log_level,
        )


DEFAULT_SETTINGS = AggregationSettings()


def get_settings() -> AggregationSettings:
    """
    Load settings from the environment (after reading the project .env file).

    Every call re-reads the environment; callers that need the same settings
    for many computations should keep the returned object and pass it along.
    """
    load_dotenv(dotenv_path=ENV_PATH)
    return AggregationSettings.from_env()
