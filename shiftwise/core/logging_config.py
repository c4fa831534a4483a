"""
Logging configuration utilities.

Every component logs through a named stdlib logger (``workflow_engine``,
``action_executor``, ``scheduler``, ...). This helper only configures the
root logger with a consistent format.
"""

import logging
import os
from typing import Optional


def setup_logging(level: Optional[int] = None, log_file: Optional[str] = None) -> None:
    """Configure root logger with a basic formatter.

    Parameters
    ----------
    level: Optional[int]
        Logging level (e.g. ``logging.INFO``). Defaults to ``LOG_LEVEL`` from
        the environment, or INFO.
    log_file: Optional[str]
        Optional file path to log to. If provided, logs are also written to
        the specified file.
    """
    if level is None:
        level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
