"""Gemini LLM provider using Google's Generative Language API."""
from __future__ import annotations

import os
import time
from typing import Optional

import requests

from meeting_analyst.services.llm.base import (
    BaseLLMProvider,
    GroundedResponse,
    GroundingChunk,
    GroundingMetadata,
    GroundingSegment,
    GroundingSupport,
    LLMProviderError,
)


def parse_grounding_metadata(raw: dict) -> GroundingMetadata:
    """Convert Gemini's camelCase ``groundingMetadata`` into GroundingMetadata."""
    metadata = GroundingMetadata()
    for query in raw.get("webSearchQueries") or []:
        if isinstance(query, str):
            metadata.web_search_queries.append(query)

    for chunk in raw.get("groundingChunks") or []:
        if not isinstance(chunk, dict):
            continue
        web = chunk.get("web") or {}
        metadata.grounding_chunks.append(
            GroundingChunk(uri=str(web.get("uri", "")), title=str(web.get("title", "")))
        )

    for support in raw.get("groundingSupports") or []:
        if not isinstance(support, dict):
            continue
        segment = support.get("segment") or {}
        indices = [
            int(i) for i in support.get("groundingChunkIndices") or []
            if isinstance(i, (int, float))
        ]
        metadata.grounding_supports.append(
            GroundingSupport(
                segment=GroundingSegment(
                    start_index=int(segment.get("startIndex", 0)),
                    end_index=int(segment.get("endIndex", 0)),
                    text=str(segment.get("text", "")),
                ),
                chunk_indices=indices,
            )
        )

    if "searchEntryPoint" in raw:
        metadata.search_entry_point = raw["searchEntryPoint"]
    return metadata


class GeminiProvider(BaseLLMProvider):
    """LLM provider for Google Gemini models, with Google Search grounding."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        **kwargs,
    ) -> None:
        super().__init__(model, logger_name="analyst.llm.gemini", **kwargs)
        self._api_key = api_key or os.environ.get("GOOGLE_API_KEY", "")
        self._base_url = base_url.rstrip("/")

    def is_available(self) -> bool:
        # The REST endpoint authenticates by API key only.
        return bool(self._api_key)

    def _url(self) -> str:
        model_name = self._model
        if not model_name.startswith("models/"):
            model_name = f"models/{model_name}"
        return f"{self._base_url}/v1beta/{model_name}:generateContent"

    def _post(self, payload: dict, timeout: int) -> dict:
        if not self._api_key:
            raise LLMProviderError("GOOGLE_API_KEY not found")
        try:
            # Key goes in the query string; the URL is never logged with it.
            response = requests.post(
                self._url(),
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise LLMProviderError("Failed to reach Gemini API") from exc

        if response.status_code != 200:
            self._logger.error("Gemini error: %s - %s", response.status_code, response.text[:1000])
            raise LLMProviderError(f"Gemini error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMProviderError("Gemini returned a non-JSON body") from exc
        self._logger.debug("Gemini raw response: %s", str(data)[:1500])
        return data

    @staticmethod
    def _first_candidate(data: dict) -> dict:
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            raise LLMProviderError("Gemini response missing candidates")
        return candidates[0]

    @staticmethod
    def _candidate_text(candidate: dict) -> str:
        parts = (candidate.get("content") or {}).get("parts") or []
        if not parts or not isinstance(parts[0], dict):
            return ""
        return str(parts[0].get("text", ""))

    def _payload(self, prompt: str, temperature: float, max_output_tokens: int) -> dict:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }

    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.5,
        timeout: int = 60,
        max_output_tokens: int = 2000,
    ) -> str:
        """Make a call to the Gemini API and return the response text."""
        data = self._post(self._payload(prompt, temperature, max_output_tokens), timeout)
        text = self._candidate_text(self._first_candidate(data))
        if not text:
            raise LLMProviderError("Gemini response missing parts")
        return text

    def prompt_with_grounding(self, prompt_text: str) -> GroundedResponse:
        """Send a prompt with the google_search tool enabled.

        Returns the reply text together with the grounding metadata Gemini
        attached to it (None when the model did not search).
        """
        prompt_id, call_number = self._next_call()
        self._log_request(prompt_id, call_number, prompt_text, grounding=True)
        started = time.perf_counter()

        payload = self._payload(prompt_text, self._temperature, self._max_output_tokens)
        payload["tools"] = [{"google_search": {}}]
        try:
            data = self._post(payload, self._timeout)
            candidate = self._first_candidate(data)
            text = self._candidate_text(candidate)
            if not text:
                raise LLMProviderError("Gemini grounded response missing text")
        except LLMProviderError as exc:
            self._logger.error(
                "LLM error (grounded) prompt_id=%s call=%d duration_ms=%d error=%s",
                prompt_id, call_number, int((time.perf_counter() - started) * 1000), exc,
            )
            self._record(
                stem="grounded", prompt=prompt_text, response="", started=started,
                prompt_id=prompt_id, grounding=True, error=str(exc),
            )
            raise

        metadata: Optional[GroundingMetadata] = None
        raw_metadata = candidate.get("groundingMetadata")
        if isinstance(raw_metadata, dict):
            metadata = parse_grounding_metadata(raw_metadata)

        self._logger.info(
            "LLM response (grounded) prompt_id=%s call=%d response_chars=%d "
            "queries=%d chunks=%d supports=%d duration_ms=%d",
            prompt_id,
            call_number,
            len(text),
            len(metadata.web_search_queries) if metadata else 0,
            len(metadata.grounding_chunks) if metadata else 0,
            len(metadata.grounding_supports) if metadata else 0,
            int((time.perf_counter() - started) * 1000),
        )
        self._record(
            stem="grounded", prompt=prompt_text, response=text, started=started,
            prompt_id=prompt_id, grounding=True,
        )
        return GroundedResponse(text=text, grounding_metadata=metadata)
