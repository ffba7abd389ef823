import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from tabscribe.auth import require_owner
from tabscribe.database import get_db
from tabscribe.services.aggregator import SessionLocks, TranscriptAggregator
from tabscribe.services.deepgram_client import DeepgramClient
from tabscribe.services.gemini_client import GeminiClient
from tabscribe.services.ingest import ingest_chunk
from tabscribe.services.orchestrator import ProviderOrchestrator
from tabscribe.services.pipeline import TranscriptionPipeline, new_request_id
from tabscribe.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transcribe"])

_orchestrator: ProviderOrchestrator | None = None
_session_locks = SessionLocks()


def get_orchestrator() -> ProviderOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        primary = GeminiClient()
        fallback = DeepgramClient()
        if not primary.available():
            logger.warning("GEMINI_API_KEY not set: every chunk will go to the fallback provider")
        if not fallback.available():
            logger.warning("DEEPGRAM_API_KEY not set: no fallback provider")
        _orchestrator = ProviderOrchestrator(primary, fallback)
    return _orchestrator


async def get_pipeline(
    orchestrator: ProviderOrchestrator = Depends(get_orchestrator),
) -> TranscriptionPipeline:
    db = await get_db()
    return TranscriptionPipeline(
        orchestrator,
        TranscriptAggregator(TranscriptStore(db), _session_locks),
    )


@router.post("/transcribe")
async def transcribe_chunk(
    owner_id: str = Depends(require_owner),
    pipeline: TranscriptionPipeline = Depends(get_pipeline),
    audio: UploadFile | None = File(None),
    seq: str | None = Form(None),
    startMs: str | None = Form(None),  # noqa: N803 - recorder form field names
    endMs: str | None = Form(None),  # noqa: N803
    sessionId: str | None = Form(None),  # noqa: N803
    prevTail: str | None = Form(None),  # noqa: N803
    title: str | None = Form(None),
    sourceUrl: str | None = Form(None),  # noqa: N803
    sourceTabTitle: str | None = Form(None),  # noqa: N803
):
    """Transcribe one recorded chunk and append it to its transcript."""
    request_id = new_request_id()
    logger.info("[transcribe:%s] start", request_id)

    raw = await audio.read() if audio is not None else None
    submission = ingest_chunk(
        audio=raw,
        mime_type=audio.content_type if audio is not None else None,
        seq=seq,
        start_ms=startMs,
        end_ms=endMs,
        prev_tail=prevTail,
        session_id=sessionId,
        title=title,
        source_url=sourceUrl,
        source_label=sourceTabTitle,
    )
    result = await pipeline.submit(owner_id, submission, request_id=request_id)
    return JSONResponse(result.to_body())
