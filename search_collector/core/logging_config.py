"""Centralized logging configuration for the collector.

Provides clean separation between configuration parsing and logging setup.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty HTTP libraries only log below WARNING when debugging
QUIET_LOGGERS = ('urllib3', 'requests')


class LoggingConfigurator:
    """Handles all logging setup independently of other configuration."""

    @staticmethod
    def setup_logging(log_level: str = 'INFO', log_file: Optional[str] = None) -> None:
        """Set up logging configuration.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR). Unknown levels fall back to INFO.
            log_file: Optional path to log file. If None, logs to console only.
        """
        level = getattr(logging, (log_level or 'INFO').upper(), None)
        if not isinstance(level, int):
            level = logging.INFO

        handlers = [logging.StreamHandler()]
        if log_file:
            # Ensure directory exists
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, exist_ok=True)
            handlers.insert(0, logging.FileHandler(log_file))

        logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

        quiet_level = level if level == logging.DEBUG else logging.WARNING
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(quiet_level)
