"""Speech-to-text providers.

Transcribers return plain text on success and a sentinel string on failure
(see ``echovault.errors``); callers map sentinels to user-facing messages.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from echovault.errors import (
    API_AUTH_ERROR,
    API_BAD_REQUEST,
    API_EXCEPTION,
    API_RATE_LIMIT,
    NO_SPEECH,
)

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
}


class Transcriber(ABC):
    """Abstract transcription interface."""

    @abstractmethod
    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """Return the transcript, or a sentinel string on failure."""
        ...


class WhisperTranscriber(Transcriber):
    """OpenAI-compatible ``audio/transcriptions`` client."""

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ):
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._timeout = timeout

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        base_mime = mime_type.split(";")[0].strip() or "audio/webm"
        filename = f"audio.{_EXTENSIONS.get(base_mime, 'webm')}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/audio/transcriptions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    files={"file": (filename, audio, base_mime)},
                    data={"model": self._model},
                )
        except httpx.HTTPError as e:
            logger.error(f"Transcription request failed: {e}", exc_info=True)
            return API_EXCEPTION

        if resp.status_code == 429:
            return API_RATE_LIMIT
        if resp.status_code == 401:
            return API_AUTH_ERROR
        if resp.status_code == 400:
            return API_BAD_REQUEST
        if resp.status_code >= 300:
            logger.warning(f"Transcription API returned {resp.status_code}")
            return f"API_ERROR_{resp.status_code}"

        transcript = (resp.json().get("text") or "").strip()
        if not transcript:
            return NO_SPEECH
        return transcript
