from __future__ import annotations

import requests

from meeting_analyst.services.llm.base import BaseLLMProvider, LLMProviderError


class OpenAIProvider(BaseLLMProvider):
    """LLM provider for OpenAI and OpenAI-compatible APIs (no grounding)."""

    provider_name = "openai"

    def __init__(
        self, api_key: str, model: str, base_url: str = "https://api.openai.com", **kwargs
    ) -> None:
        super().__init__(model, logger_name="analyst.llm.openai", **kwargs)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.5,
        timeout: int = 60,
        max_output_tokens: int = 2000,
    ) -> str:
        """Make a call to the chat completions API and return the response text."""
        request_body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": "You are a meticulous meeting analyst."},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }

        try:
            response = requests.post(
                f"{self._base_url}/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise LLMProviderError("Failed to reach OpenAI") from exc

        if response.status_code != 200:
            self._logger.error("OpenAI error: %s - %s", response.status_code, response.text[:500])
            raise LLMProviderError(f"OpenAI error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMProviderError("OpenAI returned a non-JSON body") from exc
        choices = data.get("choices", [])
        if not choices:
            raise LLMProviderError("OpenAI response missing choices")

        content = choices[0].get("message", {}).get("content", "")
        return str(content or "").strip()
