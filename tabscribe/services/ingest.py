"""Validation and normalization of incoming chunk requests."""

import logging
import math
import re

from tabscribe.config import MAX_PREV_TAIL_CHARS
from tabscribe.errors import ValidationError
from tabscribe.models.chunk import Chunk, ChunkSubmission, SessionMetadata

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "audio/webm"

# Substring -> canonical mime type. Order matters: first hit wins.
_MIME_ALIASES: list[tuple[str, str]] = [
    ("webm", "audio/webm"),
    ("ogg", "audio/ogg"),
    ("opus", "audio/ogg"),
    ("wav", "audio/wav"),
    ("mpeg", "audio/mpeg"),
    ("mp3", "audio/mpeg"),
    ("mp4", "audio/mp4"),
    ("m4a", "audio/mp4"),
    ("aac", "audio/aac"),
    ("flac", "audio/flac"),
]

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_mime_type(raw: str | None) -> str:
    """Collapse codec/parameter variants to a canonical audio mime type.

    ``audio/webm;codecs=opus`` becomes ``audio/webm``; anything unrecognized
    falls back to ``audio/webm``, the recorder's native container.
    """
    value = (raw or "").strip().lower()
    if not value:
        return DEFAULT_MIME_TYPE
    for needle, canonical in _MIME_ALIASES:
        if needle in value:
            return canonical
    logger.debug("Unrecognized mime type %r, using %s", raw, DEFAULT_MIME_TYPE)
    return DEFAULT_MIME_TYPE


def normalize_prev_tail(raw: str | None, limit: int = MAX_PREV_TAIL_CHARS) -> str | None:
    """Collapse whitespace and keep only the last ``limit`` characters."""
    if not raw:
        return None
    collapsed = _WHITESPACE_RE.sub(" ", raw).strip()
    if not collapsed:
        return None
    return collapsed[-limit:]


def parse_optional_int(raw: object) -> int | None:
    """Parse a form value as an integer, or None when absent, non-numeric or fractional.

    Zero is a real value (the first chunk starts at 0 ms), so nothing is
    coerced to 0.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def _optional_text(raw: str | None) -> str | None:
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def ingest_chunk(
    *,
    audio: bytes | None,
    mime_type: str | None = None,
    seq: object = None,
    start_ms: object = None,
    end_ms: object = None,
    prev_tail: str | None = None,
    session_id: str | None = None,
    title: str | None = None,
    source_url: str | None = None,
    source_label: str | None = None,
) -> ChunkSubmission:
    """Validate raw request fields and build a normalized submission.

    Raises:
        ValidationError: when the audio payload is missing or empty.
    """
    if not audio:
        raise ValidationError("Missing 'audio' file")

    chunk = Chunk(
        sequence=parse_optional_int(seq),
        start_ms=parse_optional_int(start_ms),
        end_ms=parse_optional_int(end_ms),
        audio_bytes=audio,
        mime_type=normalize_mime_type(mime_type),
        prev_tail_text=normalize_prev_tail(prev_tail),
    )
    session = SessionMetadata(
        session_id=_optional_text(session_id),
        title=_optional_text(title),
        source_url=_optional_text(source_url),
        source_label=_optional_text(source_label),
    )
    return ChunkSubmission(chunk=chunk, session=session)
