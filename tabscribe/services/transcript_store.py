"""Persistence for transcript sessions.

Each session is one row in ``transcripts``. The chunk list lives in
``content_json`` as a versioned document::

    {"version": 1, "chunks": [{"seq": 0, "startMs": 0, "endMs": 10000, "text": "..."}]}

Writes are guarded by the ``revision`` column: an update only applies when the
caller's revision is still current, otherwise ``RevisionConflict`` is raised
and the caller re-reads.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime

from pydantic import ValidationError as PydanticValidationError

from tabscribe.database import DatabaseAdapter
from tabscribe.errors import PersistenceError, RevisionConflict
from tabscribe.models.transcript import (
    CONTENT_SCHEMA_VERSION,
    SessionPatch,
    TranscriptContent,
    TranscriptSession,
)

try:  # Optional: only present when running against Postgres
    from asyncpg.exceptions import UniqueViolationError  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    UniqueViolationError = None

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, title, source_url, source_label, duration_ms, chunk_count, "
    "content_json, revision, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def migrate_content(data: object) -> dict:
    """Upgrade a stored content document to the current schema version.

    Version 0 is a bare JSON list of chunks, or an object without a
    ``version`` key. Unknown future versions are rejected.
    """
    if isinstance(data, list):
        return {"version": CONTENT_SCHEMA_VERSION, "chunks": data}
    if not isinstance(data, dict):
        raise ValueError(f"content must be an object, got {type(data).__name__}")

    version = data.get("version", 0)
    if not isinstance(version, int) or version > CONTENT_SCHEMA_VERSION:
        raise ValueError(f"unsupported content version {version!r}")
    if version < CONTENT_SCHEMA_VERSION:
        chunks = data.get("chunks")
        return {"version": CONTENT_SCHEMA_VERSION, "chunks": chunks if isinstance(chunks, list) else []}
    return data


def parse_content(raw: object, session_id: str = "?") -> TranscriptContent:
    """Parse stored content, failing closed to an empty document.

    A document that cannot be read is a data-integrity problem, so it is
    logged at ERROR rather than raised.
    """
    if raw is None or raw == "":
        return TranscriptContent()
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return TranscriptContent.model_validate(migrate_content(data))
    except (ValueError, TypeError, PydanticValidationError) as exc:
        logger.error(
            "Unreadable content_json for transcript %s, treating as empty: %s", session_id, exc
        )
        return TranscriptContent()


def _row_to_session(row) -> TranscriptSession:
    return TranscriptSession(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        source_url=row["source_url"],
        source_label=row["source_label"],
        duration_ms=row["duration_ms"],
        chunk_count=row["chunk_count"] or 0,
        content=parse_content(row["content_json"], row["id"]),
        revision=row["revision"] or 0,
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]) if row["updated_at"] is not None else None,
    )


def _is_unique_violation(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    return UniqueViolationError is not None and isinstance(exc, UniqueViolationError)


class TranscriptStore:
    def __init__(self, db: DatabaseAdapter) -> None:
        self.db = db

    async def find_session(self, session_id: str, owner_id: str) -> TranscriptSession | None:
        try:
            row = await self.db.fetch_one(
                f"SELECT {_COLUMNS} FROM transcripts WHERE id = ? AND owner_id = ?",
                (session_id, owner_id),
            )
        except Exception as exc:
            raise PersistenceError(f"Failed to load transcript {session_id}") from exc
        return _row_to_session(row) if row else None

    async def create_session(self, session: TranscriptSession) -> TranscriptSession:
        """Insert a new session. An existing id raises ``RevisionConflict``."""
        try:
            await self.db.execute(
                f"INSERT INTO transcripts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.owner_id,
                    session.title,
                    session.source_url,
                    session.source_label,
                    session.duration_ms,
                    session.chunk_count,
                    session.content.to_json(),
                    session.revision,
                    session.created_at,
                    session.updated_at,
                ),
            )
            await self.db.commit()
        except Exception as exc:
            if _is_unique_violation(exc):
                raise RevisionConflict(f"Transcript {session.id} already exists") from exc
            raise PersistenceError(f"Failed to create transcript {session.id}") from exc
        return session

    async def update_session(
        self, session_id: str, patch: SessionPatch, expected_revision: int
    ) -> TranscriptSession:
        """Apply ``patch`` if the row is still at ``expected_revision``."""
        now = _now()
        try:
            updated = await self.db.execute(
                """UPDATE transcripts SET
                    title = COALESCE(?, title),
                    source_url = COALESCE(?, source_url),
                    source_label = COALESCE(?, source_label),
                    duration_ms = ?,
                    chunk_count = ?,
                    content_json = ?,
                    revision = revision + 1,
                    updated_at = ?
                WHERE id = ? AND revision = ?""",
                (
                    patch.title,
                    patch.source_url,
                    patch.source_label,
                    patch.duration_ms,
                    patch.chunk_count,
                    patch.content.to_json(),
                    now,
                    session_id,
                    expected_revision,
                ),
            )
            await self.db.commit()
        except Exception as exc:
            raise PersistenceError(f"Failed to update transcript {session_id}") from exc

        if updated == 0:
            raise RevisionConflict(
                f"Transcript {session_id} changed since revision {expected_revision}"
            )

        try:
            row = await self.db.fetch_one(f"SELECT {_COLUMNS} FROM transcripts WHERE id = ?", (session_id,))
        except Exception as exc:
            raise PersistenceError(f"Failed to reload transcript {session_id} after update") from exc
        if not row:
            raise PersistenceError(f"Transcript {session_id} disappeared during update")
        return _row_to_session(row)

    async def list_sessions(self, owner_id: str) -> list[TranscriptSession]:
        try:
            rows = await self.db.fetch_all(
                f"SELECT {_COLUMNS} FROM transcripts WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
        except Exception as exc:
            raise PersistenceError("Failed to list transcripts") from exc
        return [_row_to_session(row) for row in rows]

    async def ping(self) -> None:
        await self.db.fetch_one("SELECT 1")
