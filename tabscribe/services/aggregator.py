"""Incremental assembly of transcribed chunks into a session document."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from tabscribe.config import AGGREGATOR_MAX_CONFLICT_RETRIES
from tabscribe.errors import PersistenceError, RevisionConflict
from tabscribe.models.chunk import Chunk, SessionMetadata
from tabscribe.models.transcript import (
    ChunkRecord,
    SessionPatch,
    TranscriptContent,
    TranscriptSession,
)
from tabscribe.services.overlap import strip_overlap
from tabscribe.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

# Looser pass against the caller's prev-tail context
PREV_TAIL_MIN_MATCH = 10
PREV_TAIL_WINDOW = 400
# Stricter pass against the previous stored chunk, only on real time overlap
TIME_OVERLAP_MIN_MS = 2000
PREV_CHUNK_MIN_MATCH = 20
PREV_CHUNK_WINDOW = 400


class SessionLocks:
    """One asyncio.Lock per session id, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                del self._locks[session_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass(frozen=True)
class AppendResult:
    session_id: str
    text: str
    created: bool
    chunk_count: int


def find_previous_chunk(content: TranscriptContent, sequence: int | None) -> ChunkRecord | None:
    """The chunk with ``sequence - 1``, else the most recently appended one."""
    previous = None
    if sequence is not None:
        previous = content.find_sequence(sequence - 1)
    return previous or content.last()


def dedupe_against_history(
    text: str,
    chunk: Chunk,
    previous: ChunkRecord | None,
) -> str:
    """Apply the prev-tail pass, then the time-overlap pass against ``previous``."""
    if chunk.prev_tail_text:
        text = strip_overlap(
            chunk.prev_tail_text, text, min_match=PREV_TAIL_MIN_MATCH, window=PREV_TAIL_WINDOW
        )

    if previous is not None and previous.end_ms is not None and chunk.start_ms is not None:
        overlap_ms = max(0, previous.end_ms - chunk.start_ms)
        if overlap_ms >= TIME_OVERLAP_MIN_MS:
            text = strip_overlap(
                previous.text, text, min_match=PREV_CHUNK_MIN_MATCH, window=PREV_CHUNK_WINDOW
            )
    return text


def _merge_duration(existing: int | None, end_ms: int | None) -> int | None:
    if end_ms is None:
        return existing
    if existing is None:
        return end_ms
    return max(existing, end_ms)


class TranscriptAggregator:
    def __init__(
        self,
        store: TranscriptStore,
        locks: SessionLocks | None = None,
        max_conflict_retries: int = AGGREGATOR_MAX_CONFLICT_RETRIES,
    ) -> None:
        self.store = store
        self.locks = locks or SessionLocks()
        self.max_conflict_retries = max(1, max_conflict_retries)

    async def append(
        self,
        owner_id: str,
        chunk: Chunk,
        text: str,
        metadata: SessionMetadata | None = None,
    ) -> AppendResult:
        """Append one transcribed chunk to its session, creating it if needed.

        Read-modify-write is serialized per session id in-process and checked
        against the stored revision, so a conflicting writer elsewhere causes
        a re-read instead of a lost update.
        """
        metadata = metadata or SessionMetadata()
        session_id = metadata.session_id or str(uuid.uuid4())

        async with self.locks.hold(session_id):
            for attempt in range(1, self.max_conflict_retries + 1):
                try:
                    return await self._append_once(owner_id, session_id, chunk, text, metadata)
                except RevisionConflict as exc:
                    logger.warning(
                        "Conflict appending to transcript %s (attempt %d/%d): %s",
                        session_id, attempt, self.max_conflict_retries, exc,
                    )
        raise PersistenceError(
            f"Gave up appending to transcript {session_id} after "
            f"{self.max_conflict_retries} conflicting writes",
            text=text,
        )

    async def _append_once(
        self,
        owner_id: str,
        session_id: str,
        chunk: Chunk,
        text: str,
        metadata: SessionMetadata,
    ) -> AppendResult:
        existing = await self.store.find_session(session_id, owner_id)

        if existing is None:
            record = ChunkRecord(
                sequence=chunk.sequence, start_ms=chunk.start_ms, end_ms=chunk.end_ms, text=text
            )
            now = datetime.now(UTC).isoformat()
            session = TranscriptSession(
                id=session_id,
                owner_id=owner_id,
                title=metadata.title,
                source_url=metadata.source_url,
                source_label=metadata.source_label,
                duration_ms=chunk.end_ms,
                chunk_count=1,
                content=TranscriptContent(chunks=[record]),
                created_at=now,
                updated_at=now,
            )
            try:
                await self.store.create_session(session)
            except RevisionConflict as exc:
                # Invisible to this owner, so the id belongs to someone else
                if await self.store.find_session(session_id, owner_id) is None:
                    raise PersistenceError(
                        f"Transcript id {session_id} is taken by another owner", text=text
                    ) from exc
                raise
            logger.info("Created transcript %s", session_id)
            return AppendResult(session_id=session_id, text=text, created=True, chunk_count=1)

        previous = find_previous_chunk(existing.content, chunk.sequence)
        adjusted = dedupe_against_history(text, chunk, previous)
        if adjusted != text:
            logger.info(
                "Stripped %d overlapping chars from chunk seq=%s of transcript %s",
                len(text) - len(adjusted), chunk.sequence, session_id,
            )

        record = ChunkRecord(
            sequence=chunk.sequence, start_ms=chunk.start_ms, end_ms=chunk.end_ms, text=adjusted
        )
        content = TranscriptContent(
            version=existing.content.version,
            chunks=[*existing.content.chunks, record],
        )
        updated = await self.store.update_session(
            session_id,
            SessionPatch(
                title=metadata.title,
                source_url=metadata.source_url,
                source_label=metadata.source_label,
                duration_ms=_merge_duration(existing.duration_ms, chunk.end_ms),
                chunk_count=existing.chunk_count + 1,
                content=content,
            ),
            expected_revision=existing.revision,
        )
        return AppendResult(
            session_id=session_id, text=adjusted, created=False, chunk_count=updated.chunk_count
        )
