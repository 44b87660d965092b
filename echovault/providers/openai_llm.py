"""OpenAI-compatible chat provider (OpenAI, DeepSeek, local gateways)."""

import logging

import httpx

from echovault.providers.llm import LLMProvider, Message

logger = logging.getLogger(__name__)


class OpenAILLM(LLMProvider):
    """``/chat/completions`` client.

    Non-2xx responses raise ``httpx.HTTPStatusError``. A response without
    choices yields ``""`` so callers take their parse-failure path.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ):
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._timeout = timeout

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=payload,
            )
        resp.raise_for_status()

        choices = resp.json().get("choices") or []
        if not choices:
            logger.warning(f"{self._model} returned no choices")
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
