"""Chat-completion provider interface.

Consumed by LLMTextAnalyzer (classification, analysis, insights, enhanced
context, free-form completion) and by TemporalResolver.
"""

from abc import ABC, abstractmethod

Message = dict[str, str]


class LLMProvider(ABC):
    """A chat model reachable over the network.

    Implementations raise on transport and HTTP errors and may return an
    empty string; callers own the fallback.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ) -> str:
        ...
