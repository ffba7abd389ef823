"""Shared plumbing for speech-to-text provider clients.

Every provider failure is classified here, once, into the error taxonomy in
``tabscribe.errors``. Nothing outside this module looks at provider error
payloads.
"""

import logging
from typing import Protocol

import httpx

from tabscribe.errors import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
    parse_retry_delay,
)

logger = logging.getLogger(__name__)

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED"}


class SpeechProvider(Protocol):
    """A speech-to-text service returning its raw JSON response."""

    name: str
    model: str

    def available(self) -> bool: ...

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        prev_tail: str | None = None,
    ) -> dict: ...


def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _retry_hint(response: httpx.Response, error: dict) -> float | None:
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
            seconds = parse_retry_delay(detail.get("retryDelay"))
            if seconds is not None:
                return seconds
    return parse_retry_delay(response.headers.get("retry-after"))


def classify_http_error(provider: str, response: httpx.Response) -> ProviderError:
    """Map a non-2xx provider response onto the error taxonomy."""
    body = _error_body(response)
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    message = (
        error.get("message")
        or body.get("err_msg")
        or (body.get("error") if isinstance(body.get("error"), str) else None)
        or f"HTTP {response.status_code} {response.reason_phrase}"
    )
    status = response.status_code
    retry_after = _retry_hint(response, error)

    if status == 429 or error.get("status") in RATE_LIMIT_STATUSES:
        return ProviderRateLimitError(
            message, provider=provider, status_code=status, retry_after=retry_after
        )
    if status >= 500:
        return ProviderTransientError(
            message, provider=provider, status_code=status, retry_after=retry_after
        )
    return ProviderError(message, provider=provider, status_code=status)


def classify_transport_error(provider: str, exc: httpx.RequestError) -> ProviderError:
    """Connection resets, DNS failures and timeouts are retryable.

    Other request errors (undecodable bodies, redirect loops) will not get
    better on retry but still count as a provider failure.
    """
    message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    if isinstance(exc, httpx.TransportError):
        return ProviderTransientError(message, provider=provider)
    return ProviderError(message, provider=provider)


async def send(provider: str, client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """Send ``request`` and raise a classified ProviderError on failure."""
    try:
        response = await client.send(request)
    except httpx.RequestError as exc:
        raise classify_transport_error(provider, exc) from exc
    if response.is_error:
        raise classify_http_error(provider, response)
    return response


def json_body(provider: str, response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderError(
            "Provider returned a non-JSON body", provider=provider, status_code=response.status_code
        ) from exc
    if not isinstance(body, dict):
        raise ProviderError(
            "Provider returned an unexpected body", provider=provider, status_code=response.status_code
        )
    return body
