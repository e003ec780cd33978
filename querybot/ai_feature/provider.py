"""
Embedding and text-generation provider.

The rest of the engine only depends on the two protocols below; GeminiProvider
is the production implementation over the Gemini REST API.

Every call returns Ok(value) or Failure(reason). Network errors, timeouts,
non-2xx responses and malformed payloads never raise past this module.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from querybot.core.config import Settings
from querybot.ai_feature.types import EmbeddingVector, Failure, Ok, ProviderResult

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> ProviderResult[EmbeddingVector]: ...


class TextGenerationProvider(Protocol):
    async def generate(
        self, prompt: str, temperature: float = 0.2, max_tokens: int = 2048
    ) -> ProviderResult[str]: ...


class GeminiProvider:
    """Wrapper around the Gemini API for embeddings and text completions."""

    def __init__(self, config: Settings, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=config.GEMINI_BASE_URL,
            timeout=config.GEMINI_TIMEOUT,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def embed(self, text: str) -> ProviderResult[EmbeddingVector]:
        payload = {
            "model": self.config.GEMINI_EMBED_MODEL,
            "content": {"parts": [{"text": text}]},
        }
        result = await self._post(f"{self.config.GEMINI_EMBED_MODEL}:embedContent", payload)
        if isinstance(result, Failure):
            logger.error(f"Gemini embedding failed ({len(text)} chars): {result.reason}")
            return result

        try:
            values = result.value["embedding"]["values"]
            return Ok([float(v) for v in values])
        except (KeyError, TypeError, ValueError) as error:
            logger.error(f"Unexpected embedding payload: {error}")
            return Failure(f"malformed embedding response: {error}")

    async def generate(
        self, prompt: str, temperature: float = 0.2, max_tokens: int = 2048
    ) -> ProviderResult[str]:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        result = await self._post(f"{self.config.GEMINI_LLM_MODEL}:generateContent", payload)
        if isinstance(result, Failure):
            logger.error(
                f"Gemini text generation failed ({len(prompt)} chars): {result.reason}"
            )
            return result

        try:
            text = result.value["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as error:
            logger.error(f"Unexpected generation payload: {error}")
            return Failure(f"malformed generation response: {error}")

        if not isinstance(text, str):
            return Failure("generation response text is not a string")
        return Ok(text)

    async def _post(self, path: str, payload: Dict[str, Any]) -> ProviderResult[Dict[str, Any]]:
        """POST with retries on rate limits, server errors and transport errors."""
        attempts = max(1, self.config.GEMINI_MAX_RETRIES)
        reason = "no attempt made"

        for attempt in range(1, attempts + 1):
            try:
                response = await self.client.post(
                    path, json=payload, params={"key": self.config.GEMINI_API_KEY}
                )
                response.raise_for_status()
                return Ok(response.json())

            except httpx.HTTPStatusError as error:
                status_code = error.response.status_code
                reason = f"HTTP {status_code}"
                if status_code not in RETRYABLE_STATUS:
                    return Failure(reason)
                if status_code == 429:
                    logger.warning(f"Gemini rate limit hit (attempt {attempt}/{attempts})")

            except httpx.RequestError as error:
                # Timeouts land here too
                reason = f"{type(error).__name__}: {error}"

            except ValueError as error:
                # Body was not JSON
                return Failure(f"invalid JSON body: {error}")

            if attempt < attempts:
                await asyncio.sleep(self.config.GEMINI_RETRY_BACKOFF_SECONDS * attempt)

        return Failure(reason)
