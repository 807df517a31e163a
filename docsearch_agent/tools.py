"""
Language model client for the agent.
"""
import logging
from typing import Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import OLLAMA_BASE_URL, LLM_MODEL, llm_retry_attempts, llm_timeout
from .errors import LLMError

logger = logging.getLogger(__name__)


class OllamaChat:
    """Ollama /api/chat client. Stateless, safe to share between sessions."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = LLM_MODEL,
        temperature: float = 0.0,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.timeout = timeout if timeout is not None else llm_timeout()
        self.retry_attempts = max(1, retry_attempts if retry_attempts is not None else llm_retry_attempts())
        self._transport = transport

    async def _chat(self, messages: List[Dict[str, str]]) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": messages,
                    "stream": False,
                    "options": {"temperature": self.temperature},
                },
            )
            response.raise_for_status()
            data = response.json()
            content = data["message"]["content"]
            if not isinstance(content, str):
                raise TypeError(f"Expected string content, got {type(content).__name__}")
            return content

    async def generate(self, messages: List[Dict[str, str]]) -> str:
        """Send role-tagged messages, return the reply text."""
        # Only transport failures are worth another attempt
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(min=1, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    content = await self._chat(messages)
        except httpx.HTTPError as e:
            logger.error(f"[LLM] Request to {self.model} failed: {e}")
            raise LLMError(f"LLM request failed: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[LLM] Malformed response from {self.model}: {e}")
            raise LLMError(f"Malformed LLM response: {e}") from e

        return content
