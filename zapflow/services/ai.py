"""
AI query client - text generation and constrained decisions for gptQuery / aiDecision nodes
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, List

from openai import AsyncOpenAI, OpenAIError

from ..core.config import settings
from ..flow.errors import ExternalCallError

logger = logging.getLogger(__name__)

DECISION_SYSTEM_PROMPT = (
    "You are a classifier. Read the conversation context and answer with exactly one "
    "of the allowed categories, copied verbatim, and nothing else.\n"
    "Allowed categories:\n{categories}"
)


class AIQueryClient(ABC):
    """AI collaborator used by gptQuery and aiDecision nodes"""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_context: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """Return generated text for a prompt"""

    @abstractmethod
    async def decide(self, prompt: str, categories: List[str]) -> str:
        """
        Return one of `categories`.

        Raises:
            ExternalCallError: when the model answers outside the category set
        """

    async def close(self) -> None:
        """Release client resources"""


def match_category(answer: str, categories: List[str]) -> Optional[str]:
    """Map a free-form answer back onto the allowed categories"""
    cleaned = answer.strip().strip("\"'.").strip().lower()
    for category in categories:
        if category.lower() == cleaned:
            return category
    # The model sometimes wraps the category in a sentence
    contained = [category for category in categories if category.lower() in cleaned]
    if len(contained) == 1:
        return contained[0]
    return None


class OpenAIQueryClient(AIQueryClient):
    """OpenAI chat completions implementation"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client"""
        if self._client is None:
            if not self.api_key:
                raise ExternalCallError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def _complete(
        self,
        messages: list[dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        kwargs = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                **kwargs
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise ExternalCallError(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()

    async def generate(
        self,
        prompt: str,
        system_context: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        messages = []
        if system_context:
            messages.append({"role": "system", "content": system_context})
        messages.append({"role": "user", "content": prompt})
        return await self._complete(messages, model, temperature, max_tokens)

    async def decide(self, prompt: str, categories: List[str]) -> str:
        if not categories:
            raise ExternalCallError("No categories to decide between")

        system = DECISION_SYSTEM_PROMPT.format(
            categories="\n".join(f"- {category}" for category in categories)
        )
        answer = await self._complete(
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            temperature=0
        )

        decision = match_category(answer, categories)
        if decision is None:
            raise ExternalCallError(f"AI answer '{answer[:80]}' is not one of {categories}")

        logger.info(f"AI decision: {decision}")
        return decision

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
