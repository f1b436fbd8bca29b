"""Error taxonomy shared by the review pipeline."""

from __future__ import annotations

from typing import Any


class ReviewerError(RuntimeError):
    """Base class for reviewer failures."""


class ConfigurationError(ReviewerError):
    """Raised when required configuration is missing or invalid."""


class TransportError(ReviewerError):
    """Raised when a GitLab or completion-service call fails at the HTTP layer."""

    def __init__(self, message: str, status_code: int = 0, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class InterpretationError(ReviewerError):
    """Raised when a completion reply matches none of the known shapes."""

    def __init__(self, message: str, raw_text: str):
        super().__init__(message)
        self.raw_text = raw_text


class ParseRecordError(ReviewerError):
    """Raised for a single malformed reply line or JSON element."""
