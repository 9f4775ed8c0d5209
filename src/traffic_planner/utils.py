"""
Utility functions for the traffic planner.

This module provides logging setup and time helpers shared by the
command line and the scenario loader.
"""

import logging
import os
from datetime import date, datetime, time, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path

    Environment Variables:
        TRAFFIC_PLANNER_LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_level = os.environ.get("TRAFFIC_PLANNER_LOG_LEVEL")
    if env_level:
        level = env_level
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger.info(f"Logging configured at {level} level")


def parse_datetime(value: Union[str, date, datetime]) -> datetime:
    """
    Parse a datetime string in one of the accepted formats.

    Timezone-aware values are converted to UTC and returned naive so that
    every time in a schedule compares against every other.

    Args:
        value: Date string, or an already parsed date or datetime. A bare
            date means midnight UTC.

    Returns:
        Naive UTC datetime

    Raises:
        ValueError: If the value is not a date, a datetime or a parsable string
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time())
    elif not isinstance(value, str):
        raise ValueError(f"Expected a date or datetime string, got {value!r}")
    else:
        dt = None
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d"):
                try:
                    dt = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if dt is None:
            raise ValueError(f"Could not parse datetime string: {value}")

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a naive UTC datetime as ISO-8601 with a Z suffix."""
    if value is None:
        return None
    return value.isoformat() + "Z"


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"
