"""
Error types shared by the connection layer, the repository and the handlers.

Handlers in main.py are the only place these are turned into HTTP responses.
"""
from typing import Any, Optional


class PlayLibError(Exception):
    """Base class for every error raised by this service."""


class ConfigurationError(PlayLibError):
    """Required connection settings are missing. Fatal, never retried."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            "Missing required environment variables for MongoDB: " + ", ".join(self.missing)
        )


class ConnectionFailedError(PlayLibError):
    """Raised once the bounded retry loop gives up."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"MongoDB connection failed after {attempts} attempts: {last_error}")


class NotConnectedError(PlayLibError):
    def __init__(self, message: str = "The database is not connected"):
        super().__init__(message)


class NotInitializedError(PlayLibError):
    def __init__(self, message: str = "Database not initialized. Call connect() first."):
        super().__init__(message)


class InvalidIdError(PlayLibError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid game id: {value!r}")


class InputValidationError(PlayLibError):
    """A client supplied a missing or malformed field."""

    def __init__(self, message: str, field: Optional[str] = None, received: Any = None):
        self.message = message
        self.field = field
        self.received = received
        super().__init__(message)
