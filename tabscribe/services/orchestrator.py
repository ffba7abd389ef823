"""Primary/fallback provider orchestration for one audio chunk.

Policy:
- The primary provider gets up to ``max_attempts`` tries. Only transient
  failures (5xx, connection errors) are retried, with exponential backoff
  unless the provider supplied its own retry delay.
- A rate-limit signal from the primary is raised to the caller as-is. The
  fallback is not tried, so the caller learns it has to slow down.
- Any other primary failure gets exactly one fallback attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tabscribe.config import (
    PROVIDER_BACKOFF_BASE_SECONDS,
    PROVIDER_MAX_ATTEMPTS,
    PROVIDER_MAX_BACKOFF_SECONDS,
    PROVIDER_TIMEOUT_SECONDS,
)
from tabscribe.errors import (
    ProviderError,
    ProviderExhaustedError,
    ProviderFailure,
    ProviderRateLimitError,
    ProviderTransientError,
)
from tabscribe.models.chunk import Chunk
from tabscribe.services.provider_http import SpeechProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    provider: str
    model: str
    used_fallback: bool = False


def _part_texts(parts: object) -> list[str]:
    if not isinstance(parts, list):
        return []
    return [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str) and p["text"]]


def extract_text(payload: object) -> str:
    """Pull the transcript out of a provider response.

    Handles a direct ``text``/``output_text`` field, Gemini-style
    ``candidates[].content.parts[].text`` and Deepgram-style
    ``results.channels[0].alternatives[0].transcript``. Returns "" when
    nothing is found; an empty transcript means silence, not failure.
    """
    if not isinstance(payload, dict):
        return ""

    for key in ("text", "output_text"):
        if isinstance(payload.get(key), str):
            return payload[key].strip()

    candidates = payload.get("candidates")
    if not isinstance(candidates, list):
        nested = payload.get("response")
        candidates = nested.get("candidates") if isinstance(nested, dict) else None
    if isinstance(candidates, list) and candidates:
        texts: list[str] = []
        for candidate in candidates[:1]:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            if isinstance(content, dict):
                texts.extend(_part_texts(content.get("parts")))
        if texts:
            return "\n".join(texts).strip()

    results = payload.get("results")
    if isinstance(results, dict):
        try:
            transcript = results["channels"][0]["alternatives"][0]["transcript"]
        except (KeyError, IndexError, TypeError):
            transcript = None
        if isinstance(transcript, str):
            return transcript.strip()

    return ""


class ProviderOrchestrator:
    def __init__(
        self,
        primary: SpeechProvider,
        fallback: SpeechProvider | None = None,
        *,
        max_attempts: int = PROVIDER_MAX_ATTEMPTS,
        backoff_base: float = PROVIDER_BACKOFF_BASE_SECONDS,
        max_backoff: float = PROVIDER_MAX_BACKOFF_SECONDS,
        timeout: float | None = PROVIDER_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.timeout = timeout
        self._sleep = sleep

    def backoff_delay(self, attempt: int, error: ProviderError) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if error.retry_after is not None:
            return min(error.retry_after, self.max_backoff)
        return min(self.backoff_base * (2 ** (attempt - 1)), self.max_backoff)

    async def transcribe(self, chunk: Chunk, timeout: float | None = None) -> TranscriptionResult:
        """Transcribe one chunk within ``timeout`` seconds (default: configured budget).

        Raises:
            ProviderRateLimitError: the primary provider reported quota exhaustion.
            ProviderFailure: both providers failed, or the budget ran out.
        """
        budget = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(self._transcribe(chunk), budget)
        except asyncio.TimeoutError as exc:
            logger.error("Transcription timed out after %ss", budget)
            raise ProviderFailure(f"Transcription timed out after {budget}s") from exc

    async def _transcribe(self, chunk: Chunk) -> TranscriptionResult:
        try:
            payload = await self._call_primary(chunk)
        except ProviderRateLimitError as exc:
            logger.warning(
                "%s rate limited (retry after %s), not falling back", exc.provider, exc.retry_after
            )
            raise
        except ProviderExhaustedError as exc:
            return await self._call_fallback(chunk, exc)

        return TranscriptionResult(
            text=extract_text(payload),
            provider=self.primary.name,
            model=self.primary.model,
        )

    async def _call_primary(self, chunk: Chunk) -> dict:
        last_error: ProviderError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.primary.transcribe(
                    chunk.audio_bytes, chunk.mime_type, chunk.prev_tail_text
                )
            except ProviderRateLimitError:
                raise
            except ProviderTransientError as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.backoff_delay(attempt, exc)
                logger.warning(
                    "%s transient error (attempt %d/%d): %s; retrying in %.1fs",
                    exc.provider, attempt, self.max_attempts, exc.message, delay,
                )
                await self._sleep(delay)
            except ProviderError as exc:
                raise ProviderExhaustedError(exc, attempt) from exc

        assert last_error is not None
        raise ProviderExhaustedError(last_error, self.max_attempts) from last_error

    async def _call_fallback(self, chunk: Chunk, exhausted: ProviderExhaustedError) -> TranscriptionResult:
        primary_error = exhausted.cause
        if self.fallback is None or not self.fallback.available():
            logger.error("Primary provider failed and no fallback is configured: %s", exhausted)
            raise ProviderFailure("Transcription failed", primary=primary_error)

        logger.warning("Primary provider failed (%s), falling back to %s", exhausted, self.fallback.name)
        try:
            payload = await self.fallback.transcribe(
                chunk.audio_bytes, chunk.mime_type, chunk.prev_tail_text
            )
        except ProviderError as exc:
            raise ProviderFailure(
                "Transcription failed", primary=primary_error, fallback=exc
            ) from exc

        return TranscriptionResult(
            text=extract_text(payload),
            provider=self.fallback.name,
            model=self.fallback.model,
            used_fallback=True,
        )
