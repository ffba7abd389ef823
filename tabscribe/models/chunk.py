from pydantic import BaseModel


class Chunk(BaseModel):
    """One normalized audio chunk ready for transcription."""

    sequence: int | None = None
    start_ms: int | None = None
    end_ms: int | None = None
    audio_bytes: bytes
    mime_type: str
    prev_tail_text: str | None = None

    @property
    def size(self) -> int:
        return len(self.audio_bytes)


class SessionMetadata(BaseModel):
    """Optional session fields carried alongside a chunk."""

    session_id: str | None = None
    title: str | None = None
    source_url: str | None = None
    source_label: str | None = None


class ChunkSubmission(BaseModel):
    chunk: Chunk
    session: SessionMetadata = SessionMetadata()
