from pydantic import BaseModel, ConfigDict, Field

CONTENT_SCHEMA_VERSION = 1


class ChunkRecord(BaseModel):
    """One appended chunk inside a transcript document.

    Stored with the recorder's wire names (``seq``, ``startMs``, ``endMs``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sequence: int | None = Field(default=None, alias="seq")
    start_ms: int | None = Field(default=None, alias="startMs")
    end_ms: int | None = Field(default=None, alias="endMs")
    text: str = ""


class TranscriptContent(BaseModel):
    version: int = CONTENT_SCHEMA_VERSION
    chunks: list[ChunkRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def find_sequence(self, sequence: int | None) -> ChunkRecord | None:
        if sequence is None:
            return None
        for record in self.chunks:
            if record.sequence == sequence:
                return record
        return None

    def last(self) -> ChunkRecord | None:
        return self.chunks[-1] if self.chunks else None

    def stitched_text(self) -> str:
        return " ".join(c.text.strip() for c in self.chunks if c.text.strip())


class TranscriptSession(BaseModel):
    id: str
    owner_id: str
    title: str | None = None
    source_url: str | None = None
    source_label: str | None = None
    duration_ms: int | None = None
    chunk_count: int = 0
    content: TranscriptContent = Field(default_factory=TranscriptContent)
    revision: int = 0
    created_at: str
    updated_at: str | None = None


class SessionPatch(BaseModel):
    """Fields written back by the aggregator after an append."""

    title: str | None = None
    source_url: str | None = None
    source_label: str | None = None
    duration_ms: int | None = None
    chunk_count: int
    content: TranscriptContent


class TranscriptListItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str | None = None
    source_url: str | None = Field(default=None, alias="sourceUrl")
    source_tab_title: str | None = Field(default=None, alias="sourceTabTitle")
    duration_ms: int | None = Field(default=None, alias="durationMs")
    chunk_count: int = Field(default=0, alias="chunkCount")
    content_json: TranscriptContent = Field(alias="contentJson")
    created_at: str = Field(alias="createdAt")

    @classmethod
    def from_session(cls, session: TranscriptSession) -> "TranscriptListItem":
        return cls(
            id=session.id,
            title=session.title,
            source_url=session.source_url,
            source_tab_title=session.source_label,
            duration_ms=session.duration_ms,
            chunk_count=session.chunk_count,
            content_json=session.content,
            created_at=session.created_at,
        )


class TranscriptListResponse(BaseModel):
    data: list[TranscriptListItem]


class TranscriptDetail(TranscriptListItem):
    text: str = ""


class ChunkResult(BaseModel):
    """Response body for a submitted chunk (transcribed or skipped)."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    skipped: bool | None = None
    text: str | None = None
    seq: int | None = None
    t_start_ms: int | None = Field(default=None, alias="tStartMs")
    t_end_ms: int | None = Field(default=None, alias="tEndMs")
    transcript_id: str | None = Field(default=None, alias="transcriptId")
    model: str

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
