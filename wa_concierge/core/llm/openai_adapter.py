"""
OpenAI adapter for the v1.x SDK.
Text in, text out; every failure is reported as None.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..config import settings

logger = logging.getLogger(__name__)

ChatMessages = List[Dict[str, str]]


class OpenAIClient:
    """
    Adapter over ``AsyncOpenAI`` used for the reply, the opt-out classifier
    and the customer name lookup.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_s: Optional[float] = None,
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.default_timeout = timeout_s or settings.OPENAI_TIMEOUT_SECONDS
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key or "missing-key")
        return self._client

    async def ask(self, messages: ChatMessages) -> Optional[str]:
        """Primary reply path with the configured defaults."""
        return await self.complete(messages)

    async def complete(
        self,
        messages: ChatMessages,
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_s: Optional[float] = None,
    ) -> Optional[str]:
        """
        Send a chat completion request.

        Args:
            messages: Ordered role/content messages
            model: Model override
            max_tokens: Completion token limit override
            temperature: Temperature override
            timeout_s: Request timeout in seconds

        Returns:
            Response text, or None on error, timeout or empty content
        """
        model = model or self.model
        max_tokens = max_tokens or self.max_tokens
        temperature = self.temperature if temperature is None else temperature
        timeout_val = timeout_s or self.default_timeout

        logger.debug(
            "LLM|req|model=%s|temp=%s|max=%d|timeout=%s|messages=%d",
            model, temperature, max_tokens, timeout_val, len(messages),
        )
        start_time = time.time()

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_completion_tokens=max_tokens,
                ),
                timeout=timeout_val,
            )
        except asyncio.TimeoutError:
            logger.error("LLM|error|type=Timeout|timeout=%s", timeout_val)
            return None
        except openai.RateLimitError as e:
            logger.error("LLM|error|type=RateLimitError|code=429|msg=%s", e)
            return None
        except openai.APIError as e:
            logger.error("LLM|error|type=%s|msg=%s", type(e).__name__, e)
            return None
        except Exception as e:
            logger.error("LLM|error|type=%s|msg=%s", type(e).__name__, e, exc_info=True)
            return None

        content = response.choices[0].message.content if response.choices else None
        latency_ms = int((time.time() - start_time) * 1000)

        if not content or not content.strip():
            logger.warning("LLM|empty_response|latency_ms=%d", latency_ms)
            return None

        logger.info("LLM|res|latency_ms=%d|chars=%d", latency_ms, len(content))
        return content
