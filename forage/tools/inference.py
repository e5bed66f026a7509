"""Async client for an OpenAI-compatible chat completion endpoint.

Defaults to Cerebras (``https://api.cerebras.ai/v1``).  Used only by the
generative synthesizer; callers handle every failure as "no synthesis".
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

logger = structlog.get_logger().bind(component="tools.inference")


class InferenceClient:
    """Thin chat-completions client with bearer auth and optional JSON mode."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.cerebras.ai/v1",
        model: str = "gpt-oss-120b",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ---- Inference ----

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> dict[str, Any]:
        """Send a chat completion request and return the full response dict.

        Args:
            messages: OpenAI-format messages [{"role": "user", "content": "..."}]
            temperature: Sampling temperature
            max_tokens: Max completion tokens
            json_mode: Ask for ``response_format={"type": "json_object"}``

        Raises:
            httpx.HTTPError: transport failure or non-2xx status
            ValueError: body is not JSON
        """
        client = await self._get_client()
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = await client.post(
            f"{self.base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        result = response.json()

        logger.debug(
            "chat_completion",
            model=self.model,
            messages_count=len(messages),
            usage=result.get("usage") if isinstance(result, dict) else None,
        )
        return result

    async def chat_simple(
        self,
        prompt: str,
        system: str = "",
        temperature: float = 0.2,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> str:
        """Convenience: send a simple prompt, get back just the text ("" if absent)."""
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        result = await self.chat(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )
        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return content if isinstance(content, str) else ""
