"""Embedding provider interface.

Vectors land in the ``entries.embedding`` column and feed the cosine ranking
used for enrichment context and journal chat, so a provider must always
return exactly ``dims`` components.
"""

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Turns entry text or a chat question into a fixed-size vector."""

    @property
    @abstractmethod
    def dims(self) -> int:
        """Vector size; must match the ``entries.embedding`` column."""
        ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, one request each unless overridden."""
        return [await self.embed(t) for t in texts]

    def fits(self, vector: list[float]) -> bool:
        """True when ``vector`` has the configured dimensionality."""
        return len(vector) == self.dims
