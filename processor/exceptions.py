"""Exceptions raised by the event feed components."""
from typing import Any, Optional


class FeedError(Exception):
    """Base class for event feed errors."""


class ConfigurationError(FeedError):
    """Process configuration is missing or invalid."""


class ValidationError(FeedError):
    """An event is missing a required field and cannot be encoded."""

    def __init__(self, index: int, field: str):
        self.index = index
        self.field = field
        super().__init__(f"event {index} has no {field}")


class UpstreamError(FeedError):
    """Fetching events from the upstream API failed."""

    def __init__(self, key: Any, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        message = f"cannot get events for guild {key}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class CancellationError(FeedError):
    """A caller stopped waiting for an in-flight fetch."""

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"wait for events of guild {key} was cancelled")
