"""Ollama completion backend.

Talks to a local Ollama server over its HTTP API:

    POST /api/generate  {"model": ..., "prompt": ..., "stream": false}

and returns the ``response`` field of the single JSON object it answers with.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import aiohttp

from chatterm.core.errors import CompletionError
from chatterm.services.base import CompletionService

logger = logging.getLogger(__name__)


class OllamaCompletionService(CompletionService):
    """Non-streaming client for a local Ollama API."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout_seconds: float = 300.0,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API endpoint (default: http://localhost:11434)
            timeout_seconds: Total timeout for one generate request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session.

        Returns:
            aiohttp ClientSession
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def is_available(self) -> bool:
        """Check if Ollama is running.

        Returns:
            True if Ollama API is accessible
        """
        try:
            session = await self._get_session()
            async with session.get(
                f"{self.base_url}/api/tags", timeout=aiohttp.ClientTimeout(total=2)
            ) as response:
                return response.status == 200
        except Exception as e:
            logger.debug(f"Ollama not available: {e}")
            return False

    async def list_models(self) -> list[str]:
        """List installed models.

        Returns:
            Model names such as ``llama3.2:latest`` (empty on error)
        """
        try:
            session = await self._get_session()
            async with session.get(
                f"{self.base_url}/api/tags", timeout=aiohttp.ClientTimeout(total=5)
            ) as response:
                if response.status == 200:
                    data = await response.json()
                    return [m["name"] for m in data.get("models", []) if "name" in m]
                return []
        except Exception as e:
            logger.error(f"Failed to list models: {e}")
            return []

    async def generate(self, model: str, prompt: str) -> str:
        """Generate a completion.

        Args:
            model: Model name
            prompt: Fully assembled prompt

        Returns:
            The ``response`` text

        Raises:
            CompletionError: Non-200 status, connection failure or a body
                without a ``response`` string.
        """
        request_data = {
            "model": model,
            "prompt": prompt,
            "stream": False,
        }

        logger.debug(f"Sending request to Ollama model={model} prompt_len={len(prompt)}")
        try:
            session = await self._get_session()
            async with session.post(
                f"{self.base_url}/api/generate",
                json=request_data,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                body = await response.text()
                if response.status != 200:
                    logger.error(f"Ollama API error: {response.status} - {body}")
                    raise CompletionError(
                        f"Ollama request failed ({response.status}): {body[:200]}"
                    )
        except CompletionError:
            raise
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Failed to call Ollama: {e}")
            raise CompletionError(f"Ollama request failed: {e}") from e

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse Ollama response: {e}")
            raise CompletionError(f"Failed to parse Ollama response: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise CompletionError("Failed to parse Ollama response: missing 'response' field")

        logger.info(f"Received response from Ollama ({len(text)} chars)")
        return text
