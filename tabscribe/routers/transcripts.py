from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tabscribe.auth import require_owner
from tabscribe.database import get_db
from tabscribe.models.transcript import (
    TranscriptDetail,
    TranscriptListItem,
    TranscriptListResponse,
)
from tabscribe.services.transcript_store import TranscriptStore

router = APIRouter(prefix="/api/transcripts", tags=["transcripts"])


@router.get("", response_model=TranscriptListResponse)
async def list_transcripts(owner_id: str = Depends(require_owner)):
    """List the caller's transcripts, newest first."""
    store = TranscriptStore(await get_db())
    sessions = await store.list_sessions(owner_id)
    return TranscriptListResponse(data=[TranscriptListItem.from_session(s) for s in sessions])


@router.get("/{transcript_id}", response_model=TranscriptDetail)
async def get_transcript(transcript_id: str, owner_id: str = Depends(require_owner)):
    """One transcript with its stitched text."""
    store = TranscriptStore(await get_db())
    session = await store.find_session(transcript_id, owner_id)
    if session is None:
        return JSONResponse({"error": "Transcript not found"}, status_code=404)
    item = TranscriptListItem.from_session(session)
    return TranscriptDetail(**item.model_dump(), text=session.content.stitched_text())
