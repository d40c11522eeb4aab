"""Exception types used across the collector.

Only ConfigurationError and RelayForwardError end a run. The remaining types
are raised and handled inside a single query worker.
"""

from typing import Any, Optional


class CollectorError(Exception):
    """Base class for all collector errors."""

    def __init__(self, message: str, context: Optional[Any] = None):
        super().__init__(message)
        self.context = context


class ConfigurationError(CollectorError):
    """A required parameter is missing or a mapping group is malformed."""


class RemoteQueryError(CollectorError):
    """Submitting, polling or reading a remote search job failed."""


class ParseError(CollectorError):
    """A result row could not be converted into a metric or annotation."""


class RelayForwardError(CollectorError):
    """The metrics service rejected a batch or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, context: Optional[Any] = None):
        super().__init__(message, context)
        self.status_code = status_code
