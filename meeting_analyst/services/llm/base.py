from __future__ import annotations

import itertools
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from meeting_analyst.services.llm_call_logger import LLMCallLogger


class LLMProviderError(RuntimeError):
    pass


# ── Grounding data ─────────────────────────────────────────────────────


@dataclass
class GroundingChunk:
    uri: str = ""
    title: str = ""

    def to_dict(self) -> dict:
        return {"web": {"uri": self.uri, "title": self.title}}

    @classmethod
    def from_dict(cls, data: dict) -> "GroundingChunk":
        web = data.get("web") or {}
        return cls(uri=str(web.get("uri", "")), title=str(web.get("title", "")))


@dataclass
class GroundingSegment:
    start_index: int = 0
    end_index: int = 0
    text: str = ""


@dataclass
class GroundingSupport:
    """Says that ``segment`` of the generated text is backed by ``chunk_indices``."""

    segment: GroundingSegment = field(default_factory=GroundingSegment)
    chunk_indices: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "segment": {
                "start_index": self.segment.start_index,
                "end_index": self.segment.end_index,
                "text": self.segment.text,
            },
            "grounding_chunk_indices": list(self.chunk_indices),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GroundingSupport":
        segment = data.get("segment") or {}
        return cls(
            segment=GroundingSegment(
                start_index=int(segment.get("start_index", 0)),
                end_index=int(segment.get("end_index", 0)),
                text=str(segment.get("text", "")),
            ),
            chunk_indices=[int(i) for i in data.get("grounding_chunk_indices") or []],
        )


@dataclass
class GroundingMetadata:
    web_search_queries: list[str] = field(default_factory=list)
    grounding_chunks: list[GroundingChunk] = field(default_factory=list)
    grounding_supports: list[GroundingSupport] = field(default_factory=list)
    search_entry_point: Any = None

    def to_dict(self) -> dict:
        data = {
            "web_search_queries": list(self.web_search_queries),
            "grounding_chunks": [c.to_dict() for c in self.grounding_chunks],
            "grounding_supports": [s.to_dict() for s in self.grounding_supports],
        }
        if self.search_entry_point is not None:
            data["search_entry_point"] = self.search_entry_point
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GroundingMetadata":
        return cls(
            web_search_queries=[str(q) for q in data.get("web_search_queries") or []],
            grounding_chunks=[
                GroundingChunk.from_dict(c)
                for c in data.get("grounding_chunks") or []
                if isinstance(c, dict)
            ],
            grounding_supports=[
                GroundingSupport.from_dict(s)
                for s in data.get("grounding_supports") or []
                if isinstance(s, dict)
            ],
            search_entry_point=data.get("search_entry_point"),
        )


@dataclass
class GroundedResponse:
    text: str
    grounding_metadata: Optional[GroundingMetadata] = None


# ── Provider contracts ─────────────────────────────────────────────────


class LLMProvider(ABC):
    @abstractmethod
    def prompt(self, prompt: str) -> str:
        """Send a raw prompt and return the response text."""
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        """Cheap check that credentials/endpoint are configured."""
        raise NotImplementedError


def supports_grounding(provider: Optional[LLMProvider]) -> bool:
    """True when the provider also offers ``prompt_with_grounding``."""
    return provider is not None and callable(getattr(provider, "prompt_with_grounding", None))


class BaseLLMProvider(LLMProvider):
    """Base implementation with request tagging, timing and call logging.

    Subclasses only need to implement _call_api() for their specific API client.
    """

    provider_name = "base"

    def __init__(
        self,
        model: str,
        logger_name: str = "analyst.llm",
        *,
        temperature: float = 0.5,
        max_output_tokens: int = 2000,
        timeout: int = 60,
        call_logger: Optional["LLMCallLogger"] = None,
    ) -> None:
        self._model = model
        self._logger = logging.getLogger(logger_name)
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._timeout = timeout
        self._call_logger = call_logger
        self._call_counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.5,
        timeout: int = 60,
        max_output_tokens: int = 2000,
    ) -> str:
        """Make an API call and return the raw response text.

        Raises:
            LLMProviderError: on transport failure, non-200 status or a
                body without usable text.
        """
        raise NotImplementedError

    def _next_call(self) -> tuple[str, int]:
        with self._counter_lock:
            call_number = next(self._call_counter)
        return uuid.uuid4().hex[:16], call_number

    def _log_request(self, prompt_id: str, call_number: int, prompt: str, grounding: bool) -> None:
        self._logger.info(
            "LLM request prompt_id=%s model=%s call=%d grounding=%s prompt_chars=%d",
            prompt_id, self._model, call_number, grounding, len(prompt),
        )

    def _record(
        self,
        *,
        stem: str,
        prompt: str,
        response: str,
        started: float,
        prompt_id: str,
        grounding: bool = False,
        error: Optional[str] = None,
    ) -> None:
        if self._call_logger is None:
            return
        self._call_logger.log_call(
            stem=stem,
            prompt_id=prompt_id,
            provider=self.provider_name,
            model=self._model,
            temperature=self._temperature,
            input_prompt=prompt,
            output_response=response,
            duration_ms=int((time.perf_counter() - started) * 1000),
            grounding=grounding,
            error=error,
        )

    def prompt(self, prompt_text: str) -> str:
        """Send a raw prompt and return the response text."""
        prompt_id, call_number = self._next_call()
        self._log_request(prompt_id, call_number, prompt_text, grounding=False)
        started = time.perf_counter()
        try:
            text = self._call_api(
                prompt_text,
                temperature=self._temperature,
                timeout=self._timeout,
                max_output_tokens=self._max_output_tokens,
            )
        except LLMProviderError as exc:
            self._logger.error(
                "LLM error prompt_id=%s call=%d duration_ms=%d error=%s",
                prompt_id, call_number, int((time.perf_counter() - started) * 1000), exc,
            )
            self._record(
                stem="prompt", prompt=prompt_text, response="", started=started,
                prompt_id=prompt_id, error=str(exc),
            )
            raise
        self._logger.info(
            "LLM response prompt_id=%s call=%d response_chars=%d duration_ms=%d",
            prompt_id, call_number, len(text), int((time.perf_counter() - started) * 1000),
        )
        self._record(
            stem="prompt", prompt=prompt_text, response=text, started=started, prompt_id=prompt_id
        )
        return text
