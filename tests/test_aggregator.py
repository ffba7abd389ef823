"""Tests for incremental transcript aggregation."""

import asyncio

import pytest

from tabscribe.errors import PersistenceError, RevisionConflict
from tabscribe.models.chunk import Chunk, SessionMetadata
from tabscribe.models.transcript import ChunkRecord, TranscriptContent
from tabscribe.services.aggregator import (
    SessionLocks,
    TranscriptAggregator,
    dedupe_against_history,
    find_previous_chunk,
)
from tabscribe.services.transcript_store import TranscriptStore


def _chunk(seq=None, start=None, end=None, prev_tail=None) -> Chunk:
    return Chunk(
        sequence=seq,
        start_ms=start,
        end_ms=end,
        audio_bytes=b"audio",
        mime_type="audio/webm",
        prev_tail_text=prev_tail,
    )


# --- Previous-chunk lookup ---


class TestFindPreviousChunk:
    def test_prefers_sequence_minus_one(self):
        content = TranscriptContent(
            chunks=[
                ChunkRecord(sequence=0, text="zero"),
                ChunkRecord(sequence=2, text="two"),
                ChunkRecord(sequence=1, text="one"),
            ]
        )
        assert find_previous_chunk(content, 2).text == "one"

    def test_falls_back_to_last_appended(self):
        content = TranscriptContent(chunks=[ChunkRecord(sequence=0, text="zero"), ChunkRecord(sequence=5, text="five")])
        assert find_previous_chunk(content, 3).text == "five"

    def test_unknown_sequence_uses_last(self):
        content = TranscriptContent(chunks=[ChunkRecord(text="a"), ChunkRecord(text="b")])
        assert find_previous_chunk(content, None).text == "b"

    def test_empty_content(self):
        assert find_previous_chunk(TranscriptContent(), 1) is None


# --- Overlap passes ---


class TestDedupeAgainstHistory:
    def test_prev_tail_pass_uses_loose_threshold(self):
        chunk = _chunk(prev_tail="we should buy milk")
        # "buy milk" is only 8 chars; "should buy milk" is 15
        assert dedupe_against_history("buy milk and eggs", chunk, None) == "buy milk and eggs"
        assert dedupe_against_history("should buy milk and eggs", chunk, None) == " and eggs"

    def test_time_overlap_pass_against_previous_chunk(self):
        previous = ChunkRecord(sequence=0, start_ms=0, end_ms=10000, text="the quarterly numbers look strong")
        chunk = _chunk(seq=1, start=7000, end=17000)
        result = dedupe_against_history("quarterly numbers look strong this year", chunk, previous)
        assert result == " this year"

    def test_small_time_overlap_skips_second_pass(self):
        previous = ChunkRecord(sequence=0, start_ms=0, end_ms=10000, text="the quarterly numbers look strong")
        chunk = _chunk(seq=1, start=9000, end=19000)
        text = "quarterly numbers look strong this year"
        assert dedupe_against_history(text, chunk, previous) == text

    def test_unknown_times_skip_second_pass(self):
        previous = ChunkRecord(sequence=0, text="the quarterly numbers look strong")
        text = "quarterly numbers look strong this year"
        assert dedupe_against_history(text, _chunk(seq=1, start=0), previous) == text

    def test_second_pass_requires_twenty_chars(self):
        previous = ChunkRecord(end_ms=10000, text="and then we said hello there")
        chunk = _chunk(start=5000)
        # "hello there" is 11 chars: below the stricter threshold
        assert dedupe_against_history("hello there friend", chunk, previous) == "hello there friend"

    def test_both_passes_compose(self):
        previous = ChunkRecord(end_ms=10000, text="theta iota kappa lambda mu nu xi omicron pi rho")
        chunk = _chunk(start=6000, prev_tail="older context ending in iota kappa")
        text = "iota kappa lambda mu nu xi omicron pi rho sigma"
        assert dedupe_against_history(text, chunk, previous) == " sigma"


# --- Session locks ---


async def test_session_locks_serialize_same_id():
    locks = SessionLocks()
    order: list[str] = []

    async def worker(name: str, delay: float):
        async with locks.hold("s1"):
            order.append(f"{name}-in")
            await asyncio.sleep(delay)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", 0.02), worker("b", 0))
    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


async def test_session_locks_independent_ids():
    locks = SessionLocks()
    async with locks.hold("s1"):
        async with locks.hold("s2"):
            assert len(locks) == 2
    assert len(locks) == 0


# --- Aggregation against the store ---


async def test_first_chunk_creates_session(db):
    agg = TranscriptAggregator(TranscriptStore(db))
    result = await agg.append(
        "user-1",
        _chunk(seq=0, start=0, end=10000),
        "hello world",
        SessionMetadata(session_id="s-1", title="Call", source_url="https://meet.example"),
    )
    assert result.created is True
    assert result.session_id == "s-1"
    assert result.text == "hello world"

    session = await TranscriptStore(db).find_session("s-1", "user-1")
    assert session.chunk_count == 1
    assert session.duration_ms == 10000
    assert session.title == "Call"
    assert session.content.chunks[0].sequence == 0


async def test_missing_session_id_generates_one(db):
    agg = TranscriptAggregator(TranscriptStore(db))
    result = await agg.append("user-1", _chunk(), "text")
    assert result.session_id
    assert await TranscriptStore(db).find_session(result.session_id, "user-1") is not None


async def test_first_chunk_without_end_has_null_duration(db):
    agg = TranscriptAggregator(TranscriptStore(db))
    await agg.append("user-1", _chunk(seq=0), "hi", SessionMetadata(session_id="s-1"))
    session = await TranscriptStore(db).find_session("s-1", "user-1")
    assert session.duration_ms is None


async def test_append_strips_and_tracks_duration(db):
    store = TranscriptStore(db)
    agg = TranscriptAggregator(store)
    meta = SessionMetadata(session_id="s-1", title="Call")
    await agg.append("user-1", _chunk(seq=0, start=0, end=10000), "the quarterly numbers look strong", meta)

    result = await agg.append(
        "user-1",
        _chunk(seq=1, start=7000, end=17000),
        "quarterly numbers look strong this year",
        SessionMetadata(session_id="s-1"),
    )
    assert result.created is False
    assert result.text == " this year"
    assert result.chunk_count == 2

    session = await store.find_session("s-1", "user-1")
    assert session.chunk_count == 2
    assert session.duration_ms == 17000
    assert session.title == "Call"
    assert [c.text for c in session.content.chunks] == ["the quarterly numbers look strong", " this year"]


async def test_out_of_order_chunks(db):
    store = TranscriptStore(db)
    agg = TranscriptAggregator(store)
    meta = SessionMetadata(session_id="s-1")
    await agg.append("user-1", _chunk(seq=0, start=0, end=10000), "zero", meta)
    await agg.append("user-1", _chunk(seq=2, start=20000, end=30000), "two", meta)
    await agg.append("user-1", _chunk(seq=1, start=10000, end=20000), "one", meta)
    await agg.append("user-1", _chunk(seq=3, start=30000), "three", meta)

    session = await store.find_session("s-1", "user-1")
    assert session.chunk_count == 4
    assert session.duration_ms == 30000
    assert [c.sequence for c in session.content.chunks] == [0, 2, 1, 3]


async def test_concurrent_appends_are_serialized(db):
    store = TranscriptStore(db)
    agg = TranscriptAggregator(store)
    meta = SessionMetadata(session_id="s-1")

    await asyncio.gather(
        *(
            agg.append("user-1", _chunk(seq=i, start=i * 10000, end=(i + 1) * 10000), f"chunk {i}", meta)
            for i in range(8)
        )
    )

    session = await store.find_session("s-1", "user-1")
    assert session.chunk_count == 8
    assert len(session.content.chunks) == 8
    assert session.duration_ms == 80000
    assert session.revision == 7


async def test_conflict_is_retried(db):
    class FlakyStore(TranscriptStore):
        def __init__(self, db):
            super().__init__(db)
            self.failures = 1

        async def update_session(self, session_id, patch, expected_revision):
            if self.failures:
                self.failures -= 1
                raise RevisionConflict("someone else wrote first")
            return await super().update_session(session_id, patch, expected_revision)

    store = FlakyStore(db)
    agg = TranscriptAggregator(store)
    meta = SessionMetadata(session_id="s-1")
    await agg.append("user-1", _chunk(seq=0), "first", meta)
    result = await agg.append("user-1", _chunk(seq=1), "second", meta)
    assert result.chunk_count == 2


async def test_persistent_conflict_gives_up(db):
    class AlwaysConflicting(TranscriptStore):
        async def update_session(self, session_id, patch, expected_revision):
            raise RevisionConflict("conflict")

    store = AlwaysConflicting(db)
    agg = TranscriptAggregator(store, max_conflict_retries=3)
    meta = SessionMetadata(session_id="s-1")
    await agg.append("user-1", _chunk(seq=0), "first", meta)
    with pytest.raises(PersistenceError) as exc_info:
        await agg.append("user-1", _chunk(seq=1), "second", meta)
    assert not isinstance(exc_info.value, RevisionConflict)
    assert exc_info.value.text == "second"


async def test_foreign_session_id_is_not_appended(db):
    class CountingStore(TranscriptStore):
        creates = 0

        async def create_session(self, session):
            self.creates += 1
            return await super().create_session(session)

    store = CountingStore(db)
    agg = TranscriptAggregator(store, max_conflict_retries=5)
    await agg.append("user-1", _chunk(seq=0), "mine", SessionMetadata(session_id="s-1"))
    store.creates = 0

    with pytest.raises(PersistenceError) as exc_info:
        await agg.append("user-2", _chunk(seq=1), "theirs", SessionMetadata(session_id="s-1"))
    assert store.creates == 1
    assert not isinstance(exc_info.value, RevisionConflict)
    assert exc_info.value.text == "theirs"

    session = await store.find_session("s-1", "user-1")
    assert session.chunk_count == 1


async def test_create_race_with_same_owner_appends(db):
    class StaleFirstRead(TranscriptStore):
        stale_reads = 1

        async def find_session(self, session_id, owner_id):
            if self.stale_reads:
                self.stale_reads -= 1
                return None
            return await super().find_session(session_id, owner_id)

    await TranscriptAggregator(TranscriptStore(db)).append(
        "user-1", _chunk(seq=0), "written elsewhere", SessionMetadata(session_id="s-1")
    )
    store = StaleFirstRead(db)
    result = await TranscriptAggregator(store).append(
        "user-1", _chunk(seq=1), "second", SessionMetadata(session_id="s-1")
    )
    assert result.created is False
    assert result.chunk_count == 2
