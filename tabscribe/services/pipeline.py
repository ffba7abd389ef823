"""Chunk submission flow: ingest, transcribe, aggregate."""

import logging
import uuid

from tabscribe.config import LOG_PROVIDER_TEXT
from tabscribe.errors import PersistenceError, ProviderFailure, ProviderRateLimitError
from tabscribe.models.chunk import ChunkSubmission
from tabscribe.models.transcript import ChunkResult
from tabscribe.services.aggregator import TranscriptAggregator
from tabscribe.services.orchestrator import ProviderOrchestrator

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class TranscriptionPipeline:
    def __init__(self, orchestrator: ProviderOrchestrator, aggregator: TranscriptAggregator) -> None:
        self.orchestrator = orchestrator
        self.aggregator = aggregator

    async def submit(
        self,
        owner_id: str,
        submission: ChunkSubmission,
        request_id: str | None = None,
    ) -> ChunkResult:
        """Transcribe one chunk and append it to its session.

        Silent chunks (empty transcript) are acknowledged with ``skipped`` and
        not persisted.

        Raises:
            ProviderRateLimitError: passed through for the caller to back off.
            ProviderFailure: neither provider produced a transcript.
            PersistenceError: transcription succeeded but saving failed; the
                error carries the transcribed text.
        """
        rid = request_id or new_request_id()
        chunk = submission.chunk
        logger.info(
            "[transcribe:%s] audio size=%dB mime=%s seq=%s",
            rid, chunk.size, chunk.mime_type, chunk.sequence if chunk.sequence is not None else "-",
        )

        try:
            result = await self.orchestrator.transcribe(chunk)
        except ProviderRateLimitError as exc:
            logger.warning("[transcribe:%s] rate limited by %s", rid, exc.provider)
            raise
        except ProviderFailure as exc:
            logger.error("[transcribe:%s] both providers failed: %s", rid, exc.details())
            raise

        if LOG_PROVIDER_TEXT:
            logger.info("[transcribe:%s] %s text: %s", rid, result.provider, result.text)

        if not result.text.strip():
            logger.info("[transcribe:%s] empty/overlap skipped", rid)
            return ChunkResult(
                skipped=True,
                seq=chunk.sequence,
                t_start_ms=chunk.start_ms,
                t_end_ms=chunk.end_ms,
                model=result.model,
            )

        try:
            appended = await self.aggregator.append(owner_id, chunk, result.text, submission.session)
        except PersistenceError as exc:
            logger.error(
                "[transcribe:%s] transcribed but not saved (%d chars from %s): %s",
                rid, len(result.text), result.provider, exc,
            )
            exc.text = exc.text or result.text
            raise

        logger.info(
            "[transcribe:%s] ok transcript=%s chunks=%d via=%s",
            rid, appended.session_id, appended.chunk_count, result.provider,
        )
        return ChunkResult(
            text=appended.text,
            seq=chunk.sequence,
            t_start_ms=chunk.start_ms,
            t_end_ms=chunk.end_ms,
            transcript_id=appended.session_id,
            model=result.model,
        )
