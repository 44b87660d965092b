"""EchoVault - journaling core with safety gating, offline replay and semantic recall."""

from echovault._core import EchoVault
from echovault.config import PipelineSettings
from echovault.errors import EchoVaultError, PersistenceError, TranscriptionError
from echovault.events import Status, StatusEvent
from echovault.providers.embedding import EmbeddingProvider
from echovault.providers.llm import LLMProvider
from echovault.services.analysis import LLMTextAnalyzer, TextAnalyzer
from echovault.services.pipeline import SubmitOutcome, SubmitStatus
from echovault.services.safety import GateResolution
from echovault.types import Entry

__version__ = "0.1.0"

__all__ = [
    "EchoVault",
    "PipelineSettings",
    "EchoVaultError",
    "PersistenceError",
    "TranscriptionError",
    "Status",
    "StatusEvent",
    "EmbeddingProvider",
    "LLMProvider",
    "TextAnalyzer",
    "LLMTextAnalyzer",
    "SubmitOutcome",
    "SubmitStatus",
    "GateResolution",
    "Entry",
]
