"""Text generation with Gemini."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .errors import GenerationError

logger = logging.getLogger(__name__)


def make_client(api_key: Optional[str]) -> Any:
    if not api_key:
        raise GenerationError(
            "No Gemini API key configured.",
            guidance="Set ai.api_key in the config or the GEMINI_API_KEY variable.",
        )
    try:
        from google import genai
    except Exception as exc:  # pragma: no cover - optional dependency
        raise GenerationError("google-genai is required for AI features.") from exc
    return genai.Client(api_key=api_key)


class GeminiGenerator:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        client: Any = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = make_client(self._api_key)
        return self._client

    def generate(self, prompt: str) -> str:
        client = self.client
        try:
            response = client.models.generate_content(model=self.model, contents=prompt)
        except Exception as exc:
            raise GenerationError(f"Generation request failed: {exc}") from exc
        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("Model returned an empty response.")
        logger.debug("Generated %s chars with %s", len(text), self.model)
        return text
