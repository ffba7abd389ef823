"""Error taxonomy for chunk transcription.

Provider clients translate transport and HTTP failures into these kinds once,
at the client boundary. Everything downstream (orchestrator, pipeline, HTTP
handlers) works only with these types.
"""

from __future__ import annotations

import re

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*s?\s*$")


def parse_retry_delay(value: object) -> float | None:
    """Parse a provider retry hint ("30s", "1.5s", "30", 30) into seconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    match = _DURATION_RE.match(str(value))
    if not match:
        return None
    return float(match.group(1))


class TabscribeError(Exception):
    """Base class for all errors raised by the transcription core."""


class ValidationError(TabscribeError):
    """Malformed or missing required input."""


class AuthError(TabscribeError):
    """No resolvable caller identity."""


class ProviderError(TabscribeError):
    """A provider call failed in a way that should not be retried."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after

    def describe(self) -> dict:
        return {
            "kind": type(self).__name__,
            "provider": self.provider,
            "status": self.status_code,
            "message": self.message,
        }


class ProviderTransientError(ProviderError):
    """5xx or connection-level failure; safe to retry."""


class ProviderRateLimitError(ProviderError):
    """Quota or rate-limit signal. Surfaced to the caller, never absorbed."""

    def retry_after_label(self, default: str) -> str:
        if self.retry_after is None:
            return default
        seconds = self.retry_after
        return f"{int(seconds)}s" if seconds == int(seconds) else f"{seconds}s"


class ProviderExhaustedError(ProviderError):
    """Primary provider gave up (retries spent or non-retryable failure)."""

    def __init__(self, cause: ProviderError, attempts: int) -> None:
        super().__init__(
            f"{cause.provider} failed after {attempts} attempt(s): {cause.message}",
            provider=cause.provider,
            status_code=cause.status_code,
        )
        self.cause = cause
        self.attempts = attempts


class ProviderFailure(TabscribeError):
    """Both the primary and the fallback provider failed."""

    def __init__(
        self,
        message: str,
        *,
        primary: ProviderError | None = None,
        fallback: ProviderError | None = None,
    ) -> None:
        super().__init__(message)
        self.primary = primary
        self.fallback = fallback

    def details(self) -> dict:
        return {
            "primary": self.primary.describe() if self.primary else None,
            "fallback": self.fallback.describe() if self.fallback else None,
        }


class PersistenceError(TabscribeError):
    """Reading or writing the transcript document failed."""

    def __init__(self, message: str, *, text: str | None = None) -> None:
        super().__init__(message)
        self.text = text


class RevisionConflict(PersistenceError):
    """The session document changed between read and write."""
