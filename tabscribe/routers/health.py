import asyncio
import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tabscribe.config import HEALTHCHECK_KEY
from tabscribe.database import get_db
from tabscribe.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

DB_PING_TIMEOUT = 1.5
_NO_STORE = {"Cache-Control": "no-store"}


@router.get("/health")
async def health(request: Request):
    """Readiness: checks the database answers within DB_PING_TIMEOUT."""
    if HEALTHCHECK_KEY:
        key = request.headers.get("x-healthcheck-key") or request.query_params.get("key")
        if key != HEALTHCHECK_KEY:
            return JSONResponse({"ok": False, "error": "forbidden"}, status_code=403)

    started = time.monotonic()
    try:
        store = TranscriptStore(await get_db())
        await asyncio.wait_for(store.ping(), DB_PING_TIMEOUT)
    except Exception as e:
        latency = int((time.monotonic() - started) * 1000)
        logger.warning("Health check database ping failed: %s", e)
        return JSONResponse(
            {"ok": False, "status": "degraded", "deps": {"db": "fail", "dbLatencyMs": latency}},
            status_code=503,
            headers=_NO_STORE,
        )

    latency = int((time.monotonic() - started) * 1000)
    return JSONResponse(
        {
            "ok": True,
            "status": "ready",
            "deps": {"db": "ok", "dbLatencyMs": latency},
            "timestamp": datetime.now(UTC).isoformat(),
        },
        headers=_NO_STORE,
    )


@router.get("/live")
async def live():
    return {"ok": True}
