"""AI Gateway - OpenAI-compatible chat completions over httpx.

Used for natural-language segment rules and message suggestions. When
no API key is configured the gateway reports itself unavailable and
callers fall back to their local heuristics.
"""

import logging
from typing import Optional, List, Dict, Any

import httpx
from pydantic import BaseModel

from crm_api.config import settings

logger = logging.getLogger(__name__)


class AIUnavailableError(RuntimeError):
    """No provider configured, or the provider returned nothing usable."""


class AIGatewayConfig(BaseModel):
    """Configuration for the AI provider connection."""

    base_url: str = "https://api.openai.com"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout: float = 30.0


class AIGateway:
    """Gateway to an OpenAI-compatible chat completion endpoint."""

    def __init__(self, config: Optional[AIGatewayConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or AIGatewayConfig(
            base_url=settings.AI_BASE_URL,
            api_key=settings.AI_API_KEY,
            model=settings.AI_MODEL,
            timeout=settings.AI_TIMEOUT_SECONDS,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with auth headers."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 1024,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run one chat completion.

        Returns:
            {"content": str, "usage": dict, "model": str}

        Raises:
            AIUnavailableError: no provider configured or empty reply
            httpx.HTTPError: transport or status failure
        """
        if not self.is_configured:
            raise AIUnavailableError("AI provider not configured")

        if system_prompt:
            messages = [{"role": "system", "content": system_prompt}] + messages

        client = await self.get_client()
        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        logger.info(f"Chat completion with model={self.config.model}")
        response = await client.post("/v1/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, dict):
            raise AIUnavailableError("AI provider returned an unexpected response")
        choices = data.get("choices") or []
        if not isinstance(choices, list) or (choices and not isinstance(choices[0], dict)):
            raise AIUnavailableError("AI provider returned malformed choices")

        content = ""
        if choices:
            message = choices[0].get("message") or {}
            if isinstance(message, dict):
                content = message.get("content") or ""
            content = content or choices[0].get("text") or ""
        if not isinstance(content, str) or not content:
            raise AIUnavailableError("AI provider returned an empty completion")

        return {"content": content, "usage": data.get("usage", {}), "model": data.get("model", self.config.model)}
