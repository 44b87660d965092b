"""Exceptions surfaced to callers of the journaling core."""

from __future__ import annotations


class EchoVaultError(Exception):
    """Base class for all EchoVault errors."""


class PersistenceError(EchoVaultError):
    """The durable store rejected a write; nothing was saved."""


class PendingSubmissionError(EchoVaultError):
    """A suspended submission was resolved twice or at the wrong stage."""


# Sentinel strings returned by transcription backends.
API_RATE_LIMIT = "API_RATE_LIMIT"
API_AUTH_ERROR = "API_AUTH_ERROR"
API_BAD_REQUEST = "API_BAD_REQUEST"
API_EXCEPTION = "API_EXCEPTION"
API_NO_CONTENT = "API_NO_CONTENT"
NO_SPEECH = "NO_SPEECH"

_SENTINEL_MESSAGES = {
    API_RATE_LIMIT: "Too many requests - please wait a moment and try again",
    API_AUTH_ERROR: "API authentication error - please check settings",
    API_BAD_REQUEST: "Audio format not supported - please try recording again",
    NO_SPEECH: "No speech detected - please try speaking closer to the microphone",
}
_GENERIC_MESSAGE = "Transcription service temporarily unavailable - please try again"
_EMPTY_MESSAGE = "Transcription failed - please try again"


class TranscriptionError(EchoVaultError):
    """Transcription returned a sentinel instead of text."""

    def __init__(self, sentinel: str, user_message: str):
        super().__init__(user_message)
        self.sentinel = sentinel
        self.user_message = user_message


def transcription_error_for(transcript: str | None) -> TranscriptionError | None:
    """Map a raw transcription result to an error, or None when it is usable text.

    Sentinels are checked in a fixed order: empty, the specific API codes,
    any other ``API_*`` code, then ``NO_SPEECH`` anywhere in the text.
    """
    if not transcript:
        return TranscriptionError(API_NO_CONTENT, _EMPTY_MESSAGE)
    if transcript in _SENTINEL_MESSAGES and transcript != NO_SPEECH:
        return TranscriptionError(transcript, _SENTINEL_MESSAGES[transcript])
    if transcript.startswith("API_"):
        return TranscriptionError(transcript, _GENERIC_MESSAGE)
    if NO_SPEECH in transcript:
        return TranscriptionError(NO_SPEECH, _SENTINEL_MESSAGES[NO_SPEECH])
    return None
