"""Provider abstractions for embedding, chat completion and transcription."""

from echovault.providers.embedding import EmbeddingProvider
from echovault.providers.llm import LLMProvider
from echovault.providers.transcription import Transcriber

__all__ = ["EmbeddingProvider", "LLMProvider", "Transcriber"]
