"""
Provider error types and failure classification.

Provider clients raise these so the cache layer can tell a rate limit from
any other upstream failure without reading the message text. Untyped
exceptions still go through the message heuristic in `classify_failure`.
"""
from enum import Enum
from typing import Optional, Union

import requests


class FailureKind(Enum):
    """How an upstream failure should be accounted for."""
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


class ProviderError(Exception):
    """Base error for a failed upstream call."""

    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class RateLimitedError(ProviderError):
    """Upstream refused the call because of its rate limit (HTTP 429)."""
    kind = FailureKind.RATE_LIMITED


class TransientProviderError(ProviderError):
    """Timeouts, 5xx responses and other failures worth retrying later."""
    kind = FailureKind.TRANSIENT


class FatalProviderError(ProviderError):
    """Failures that will not go away on retry (bad key, bad request)."""
    kind = FailureKind.FATAL


RATE_LIMIT_MARKERS = ("rate limit", "429")


def kind_for_status(status_code: int) -> FailureKind:
    """Map an HTTP error status to a failure kind."""
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify_failure(error: Union[BaseException, str]) -> FailureKind:
    """
    Classify an upstream failure.

    Typed provider errors carry their own kind. A requests HTTPError is
    classified from its status code. Anything else falls back to matching
    "rate limit" / "429" in the message, as historical stats were recorded.
    """
    if isinstance(error, ProviderError):
        return error.kind

    if isinstance(error, requests.HTTPError) and error.response is not None:
        return kind_for_status(error.response.status_code)

    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSIENT
