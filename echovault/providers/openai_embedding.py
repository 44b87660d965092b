"""OpenAI-compatible embedding provider."""

import httpx

from echovault.providers.embedding import EmbeddingProvider

# Models that accept a ``dimensions`` parameter (shortened vectors).
_SHORTENABLE_PREFIX = "text-embedding-3"


class OpenAIEmbedding(EmbeddingProvider):
    """``/embeddings`` client.

    ``dimensions`` is sent only to models that support shortening; other
    models must natively produce ``dims``-sized vectors.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        dimensions: int = 768,
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/embeddings"
        self._dims = dimensions
        self._timeout = timeout

    @property
    def dims(self) -> int:
        return self._dims

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_many([text]))[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        payload = {"model": self._model, "input": texts}
        if self._model.startswith(_SHORTENABLE_PREFIX):
            payload["dimensions"] = self._dims

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=payload,
            )
        resp.raise_for_status()
        items = sorted(resp.json()["data"], key=lambda item: item["index"])
        return [item["embedding"] for item in items]
