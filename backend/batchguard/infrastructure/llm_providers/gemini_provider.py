"""
Google Gemini provider over the generateContent REST API.

Only active if BATCHGUARD_GEMINI_API_KEY is set.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.llm_providers.base import (
    BaseLLMProvider,
    ProviderNotConfiguredError,
)

logger = structlog.get_logger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(BaseLLMProvider):
    """Google Gemini API provider."""

    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None):
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.gemini_api_key
        self._default_model = default_model or settings.gemini_model
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout, connect=10.0),
        )

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @staticmethod
    def _convert_messages(
        messages: List[Dict[str, str]],
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Gemini takes 'user'/'model' contents; system messages become system_instruction."""
        system_parts = []
        contents = []
        for msg in messages:
            role = msg.get("role", "user")
            text = msg.get("content", "")
            if role == "system":
                system_parts.append(text)
            elif role == "assistant":
                contents.append({"role": "model", "parts": [{"text": text}]})
            else:
                contents.append({"role": "user", "parts": [{"text": text}]})
        return system_parts, contents

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        if not self.is_configured:
            raise ProviderNotConfiguredError("gemini API key is not set")

        system_parts, contents = self._convert_messages(messages)
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

        response = await self._client.post(
            f"{BASE_URL}/models/{model or self._default_model}:generateContent",
            params={"key": self._api_key},
            json=body,
        )
        response.raise_for_status()
        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ValueError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in parts)

    async def aclose(self) -> None:
        await self._client.aclose()
