"""Tests for the submit-chunk pipeline outside HTTP."""

import logging

import pytest
from conftest import deepgram_payload, gemini_payload

from tabscribe.errors import PersistenceError, ProviderError
from tabscribe.services.aggregator import TranscriptAggregator
from tabscribe.services.ingest import ingest_chunk
from tabscribe.services.pipeline import TranscriptionPipeline, new_request_id
from tabscribe.services.transcript_store import TranscriptStore


class BrokenStore(TranscriptStore):
    async def find_session(self, session_id, owner_id):
        raise PersistenceError("database is locked")


def test_request_ids_are_fresh():
    ids = {new_request_id() for _ in range(50)}
    assert len(ids) == 50


async def test_submit_returns_stripped_text(db, orchestrator, primary):
    primary.outcomes = [gemini_payload("hello and welcome")]
    pipeline = TranscriptionPipeline(orchestrator, TranscriptAggregator(TranscriptStore(db)))
    result = await pipeline.submit(
        "user-1", ingest_chunk(audio=b"x", seq="0", end_ms="5000", session_id="s-1")
    )
    assert result.text == "hello and welcome"
    assert result.transcript_id == "s-1"
    assert result.t_end_ms == 5000


async def test_skipped_chunk_not_persisted(db, orchestrator, primary):
    store = TranscriptStore(db)
    primary.outcomes = [gemini_payload("")]
    pipeline = TranscriptionPipeline(orchestrator, TranscriptAggregator(store))
    result = await pipeline.submit("user-1", ingest_chunk(audio=b"x", session_id="s-1"))
    assert result.skipped is True
    assert result.transcript_id is None
    assert await store.find_session("s-1", "user-1") is None


async def test_persistence_failure_keeps_text(db, orchestrator, primary, caplog):
    primary.outcomes = [gemini_payload("important words")]
    pipeline = TranscriptionPipeline(orchestrator, TranscriptAggregator(BrokenStore(db)))
    with caplog.at_level(logging.ERROR):
        with pytest.raises(PersistenceError) as exc_info:
            await pipeline.submit("user-1", ingest_chunk(audio=b"x", session_id="s-1"))
    assert exc_info.value.text == "important words"
    assert "transcribed but not saved" in caplog.text


async def test_fallback_model_reported(db, orchestrator, primary, fallback):
    primary.outcomes = [ProviderError("bad request", provider="gemini", status_code=400)]
    fallback.outcomes = [deepgram_payload("fallback words")]
    pipeline = TranscriptionPipeline(orchestrator, TranscriptAggregator(TranscriptStore(db)))
    result = await pipeline.submit("user-1", ingest_chunk(audio=b"x"))
    assert result.text == "fallback words"
    assert result.model == "nova-3"


async def test_persistence_error_returns_500_with_text(async_client, primary, monkeypatch):
    async def broken_find(self, session_id, owner_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(TranscriptStore, "find_session", broken_find)
    primary.outcomes = [gemini_payload("important words")]
    resp = await async_client.post(
        "/api/transcribe",
        headers={"X-Owner-Id": "user-1"},
        files={"audio": ("chunk.webm", b"data", "audio/webm")},
    )
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to save transcript", "text": "important words"}
