"""Tests for Pydantic models - chunk records, content documents, responses."""

from tabscribe.errors import ProviderRateLimitError, parse_retry_delay
from tabscribe.models.transcript import ChunkRecord, ChunkResult, TranscriptContent


class TestChunkRecord:
    def test_parses_wire_names(self):
        record = ChunkRecord.model_validate({"seq": 3, "startMs": 100, "endMs": 200, "text": "hi"})
        assert record.sequence == 3
        assert record.start_ms == 100
        assert record.end_ms == 200

    def test_defaults(self):
        record = ChunkRecord()
        assert record.sequence is None
        assert record.text == ""


class TestTranscriptContent:
    def test_find_sequence(self):
        content = TranscriptContent(chunks=[ChunkRecord(sequence=0, text="a"), ChunkRecord(sequence=1, text="b")])
        assert content.find_sequence(1).text == "b"
        assert content.find_sequence(7) is None
        assert content.find_sequence(None) is None

    def test_stitched_text_skips_empty(self):
        content = TranscriptContent(
            chunks=[ChunkRecord(text="Hello there."), ChunkRecord(text=""), ChunkRecord(text=" How are you?")]
        )
        assert content.stitched_text() == "Hello there. How are you?"


class TestChunkResult:
    def test_body_uses_aliases_and_drops_unknowns(self):
        body = ChunkResult(text="hi", seq=0, t_end_ms=5000, transcript_id="t-1", model="nova-3").to_body()
        assert body == {"ok": True, "text": "hi", "seq": 0, "tEndMs": 5000, "transcriptId": "t-1", "model": "nova-3"}

    def test_empty_text_is_kept(self):
        body = ChunkResult(text="", transcript_id="t-1", model="m").to_body()
        assert body["text"] == ""


class TestRetryDelay:
    def test_parse_variants(self):
        assert parse_retry_delay("30s") == 30
        assert parse_retry_delay("1.5s") == 1.5
        assert parse_retry_delay("12") == 12
        assert parse_retry_delay(7) == 7
        assert parse_retry_delay(None) is None
        assert parse_retry_delay("soon") is None
        assert parse_retry_delay(-1) is None

    def test_retry_after_label(self):
        err = ProviderRateLimitError("quota", provider="gemini", retry_after=30.0)
        assert err.retry_after_label("60s") == "30s"
        assert ProviderRateLimitError("quota", provider="gemini").retry_after_label("60s") == "60s"
