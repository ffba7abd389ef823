"""Primary speech-to-text provider: Gemini generateContent over REST.

Small chunks are sent inline as base64. Chunks above ``INLINE_MAX_BYTES`` go
through the Files API (resumable upload) and are referenced by URI.
"""

import base64
import logging

import httpx

from tabscribe.config import (
    GEMINI_API_KEY,
    GEMINI_BASE_URL,
    GEMINI_MODEL_ID,
    INLINE_MAX_BYTES,
    PROVIDER_HTTP_TIMEOUT_SECONDS,
)
from tabscribe.errors import ProviderError
from tabscribe.services.provider_http import json_body, send

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gemini"

STITCH_PROMPT = (
    'You will receive the last part of the previous transcript in "prev_tail" '
    "and a new audio chunk with ~3s overlap.\n"
    "Task:\n"
    "- Transcribe the new audio.\n"
    "- Use prev_tail only as context.\n"
    "- Return ONLY the new words after prev_tail (no repetition).\n"
    "- Keep punctuation/casing.\n"
    "- If fully overlapping/silent, return empty."
)
PLAIN_PROMPT = "Transcribe this audio. Return only the verbatim transcript with punctuation."


def build_prompt_parts(prev_tail: str | None) -> list[dict]:
    if prev_tail:
        return [{"text": STITCH_PROMPT}, {"text": f"prev_tail:\n{prev_tail}"}]
    return [{"text": PLAIN_PROMPT}]


class GeminiClient:
    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_MODEL_ID,
        base_url: str = GEMINI_BASE_URL,
        inline_max_bytes: int = INLINE_MAX_BYTES,
        timeout: float = PROVIDER_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.inline_max_bytes = inline_max_bytes
        self.timeout = timeout
        self._transport = transport

    def available(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"x-goog-api-key": self.api_key},
        )

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        prev_tail: str | None = None,
    ) -> dict:
        """Run one generateContent call and return the raw response JSON."""
        if not self.available():
            raise ProviderError("GEMINI_API_KEY is not configured", provider=self.name)

        async with self._client() as client:
            if len(audio) <= self.inline_max_bytes:
                audio_part = {
                    "inline_data": {
                        "mime_type": mime_type,
                        "data": base64.b64encode(audio).decode("ascii"),
                    }
                }
            else:
                logger.info("Audio is %d bytes, uploading via Files API", len(audio))
                uploaded = await self._upload(client, audio, mime_type)
                audio_part = {
                    "file_data": {
                        "mime_type": uploaded.get("mimeType", mime_type),
                        "file_uri": uploaded["uri"],
                    }
                }

            payload = {
                "contents": [
                    {"role": "user", "parts": [*build_prompt_parts(prev_tail), audio_part]},
                ],
            }
            request = client.build_request(
                "POST",
                f"{self.base_url}/v1beta/models/{self.model}:generateContent",
                json=payload,
            )
            response = await send(self.name, client, request)
            return json_body(self.name, response)

    async def _upload(self, client: httpx.AsyncClient, audio: bytes, mime_type: str) -> dict:
        """Resumable upload: start a session, then send bytes and finalize."""
        start = client.build_request(
            "POST",
            f"{self.base_url}/upload/v1beta/files",
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(audio)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
            },
            json={"file": {"display_name": "chunk"}},
        )
        started = await send(self.name, client, start)
        upload_url = started.headers.get("x-goog-upload-url")
        if not upload_url:
            raise ProviderError("Files API did not return an upload URL", provider=self.name)

        finish = client.build_request(
            "POST",
            upload_url,
            headers={
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
            content=audio,
        )
        finished = await send(self.name, client, finish)
        file_info = json_body(self.name, finished).get("file") or {}
        if not file_info.get("uri"):
            raise ProviderError("Files API response is missing the file URI", provider=self.name)
        return file_info
