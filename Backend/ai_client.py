"""Gemini client for structured (JSON-schema constrained) generation.

Thin wrapper over the google-genai SDK's async API.  The client only
returns raw response text; validating it against the mood contract is
the aggregator's job.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from errors import AggregationFailed

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiClient:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, temperature: float = 0.4):
        self.model = model
        self.temperature = temperature
        self._client = genai.Client(api_key=api_key)

    async def aclose(self) -> None:
        """Close the SDK's async and sync HTTP clients."""
        await self._client.aio.aclose()
        self._client.close()

    async def __aenter__(self) -> "GeminiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        system_instruction: Optional[str] = None,
    ) -> str:
        """Send *prompt* and return the model's JSON text constrained by *schema*."""
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            response_schema=schema,
            temperature=self.temperature,
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except genai_errors.APIError as e:
            logger.error(f"[gemini] {self.model} call failed: HTTP {e.code} {e.message}")
            raise AggregationFailed(
                f"Text-generation service error: {e.message}", status_code=502
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[gemini] {self.model} transport error: {e!r}")
            raise AggregationFailed(
                f"Text-generation service unreachable: {e}", status_code=502
            ) from e

        text = response.text or ""
        logger.info(f"[gemini] {self.model} returned {len(text)} chars")
        return text
