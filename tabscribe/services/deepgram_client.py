"""Fallback speech-to-text provider: Deepgram prerecorded transcription."""

import logging

import httpx

from tabscribe.config import (
    DEEPGRAM_API_KEY,
    DEEPGRAM_BASE_URL,
    DEEPGRAM_MODEL,
    PROVIDER_HTTP_TIMEOUT_SECONDS,
)
from tabscribe.errors import ProviderError
from tabscribe.services.provider_http import json_body, send

logger = logging.getLogger(__name__)

PROVIDER_NAME = "deepgram"


class DeepgramClient:
    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str = DEEPGRAM_API_KEY,
        model: str = DEEPGRAM_MODEL,
        base_url: str = DEEPGRAM_BASE_URL,
        timeout: float = PROVIDER_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def available(self) -> bool:
        return bool(self.api_key)

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        prev_tail: str | None = None,
    ) -> dict:
        """Send raw audio bytes; ``prev_tail`` is not used by this provider."""
        if not self.available():
            raise ProviderError("DEEPGRAM_API_KEY is not configured", provider=self.name)

        logger.info("Deepgram prerecorded request: model=%s bytes=%d mime=%s", self.model, len(audio), mime_type)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            request = client.build_request(
                "POST",
                f"{self.base_url}/v1/listen",
                params={"model": self.model, "smart_format": "true"},
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": mime_type,
                },
                content=audio,
            )
            response = await send(self.name, client, request)
            body = json_body(self.name, response)

        metadata = body.get("metadata") or {}
        logger.info(
            "Deepgram response: request_id=%s duration=%s",
            metadata.get("request_id"),
            metadata.get("duration"),
        )
        return body
