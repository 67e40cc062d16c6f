"""Exception types shared across the engine.

Only InfraFailure is allowed to end a scan early. Everything else that can go
wrong inside an observation window is converted into a policy flag, a silence
entry or a coverage gap.
"""

from typing import Optional


class SilentWatchError(Exception):
    """Base class for SilentWatch errors."""


class ConfigError(SilentWatchError):
    """Raised when configuration is malformed or names unknown keys."""


class ExpectationError(SilentWatchError):
    """Raised when an expectation record is invalid."""
    def __init__(self, expectation_id: str, message: str):
        self.expectation_id = expectation_id
        self.message = message
        super().__init__(f"{expectation_id}: {message}")


class SilenceError(SilentWatchError):
    """Raised when a silence entry is missing a required field."""


class InfraFailure(SilentWatchError):
    """Browser or session level fault. Forces an INCOMPLETE verdict."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)
