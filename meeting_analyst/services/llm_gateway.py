import logging
import threading
from typing import Optional

from meeting_analyst.services.analysis_settings import AnalysisSettings, read_config
from meeting_analyst.services.llm import (
    GeminiProvider,
    GroundedResponse,
    LLMProvider,
    LLMProviderError,
    OpenAIProvider,
    supports_grounding,
)
from meeting_analyst.services.llm_call_logger import LLMCallLogger

DEFAULT_SELECTED_MODEL = "gemini:gemini-2.5-flash"


class LLMGateway:
    """Narrow LLM access point used by the analysis pipeline.

    Reads model selection from config.json dynamically:
    - models.selected_model: format "provider:model_id" (e.g., "gemini:gemini-2.5-flash")
    - providers.<provider>: contains api_key and base_url for each provider

    A provider instance can also be injected directly, which bypasses the
    config lookup entirely.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        *,
        provider: Optional[LLMProvider] = None,
        provider_override: Optional[str] = None,
        settings: Optional[AnalysisSettings] = None,
        call_logger: Optional[LLMCallLogger] = None,
    ) -> None:
        self._config_path = config_path
        self._injected = provider
        self._override = provider_override
        self._settings = settings or AnalysisSettings()
        self._call_logger = call_logger
        self._logger = logging.getLogger("analyst.llm.gateway")
        self._cache_lock = threading.Lock()
        self._cached_key: Optional[tuple] = None
        self._cached_provider: Optional[LLMProvider] = None

    def _get_selected_model(self, config: dict) -> tuple[str, str]:
        """Return (provider_name, model_id) from the override or config."""
        selected = self._override or config.get("models", {}).get("selected_model", "")
        selected = selected or DEFAULT_SELECTED_MODEL
        if ":" not in selected:
            raise LLMProviderError(
                f"Invalid model format '{selected}'. Expected 'provider:model_id'."
            )
        provider, model_id = selected.split(":", 1)
        return provider.lower(), model_id

    def _build_provider(self, provider_name: str, model_id: str, provider_config: dict) -> LLMProvider:
        api_key = provider_config.get("api_key", "")
        base_url = provider_config.get("base_url", "")
        options = {
            "temperature": self._settings.temperature,
            "max_output_tokens": self._settings.max_output_tokens,
            "timeout": self._settings.llm_timeout_seconds,
            "call_logger": self._call_logger,
        }

        if provider_name in ("gemini", "google"):
            if base_url:
                return GeminiProvider(api_key=api_key, model=model_id, base_url=base_url, **options)
            return GeminiProvider(api_key=api_key, model=model_id, **options)

        if provider_name == "openai":
            if base_url:
                return OpenAIProvider(api_key=api_key, model=model_id, base_url=base_url, **options)
            return OpenAIProvider(api_key=api_key, model=model_id, **options)

        if provider_name == "lmstudio":
            return OpenAIProvider(
                api_key="lmstudio",
                model=model_id,
                base_url=base_url or "http://127.0.0.1:1234",
                **options,
            )

        raise LLMProviderError(f"Unknown provider: {provider_name}")

    def _get_provider(self) -> LLMProvider:
        if self._injected is not None:
            return self._injected

        config = read_config(self._config_path)
        provider_name, model_id = self._get_selected_model(config)
        provider_config = config.get("providers", {}).get(provider_name, {})
        key = (
            provider_name,
            model_id,
            provider_config.get("api_key", ""),
            provider_config.get("base_url", ""),
        )
        with self._cache_lock:
            if self._cached_provider is None or self._cached_key != key:
                self._cached_provider = self._build_provider(provider_name, model_id, provider_config)
                self._cached_key = key
                self._logger.info(
                    "LLM provider resolved provider=%s model=%s", provider_name, model_id
                )
            return self._cached_provider

    def _provider_or_none(self) -> Optional[LLMProvider]:
        try:
            return self._get_provider()
        except LLMProviderError as exc:
            self._logger.warning("LLM provider unavailable: %s", exc)
            return None

    def is_available(self) -> bool:
        provider = self._provider_or_none()
        return provider is not None and provider.is_available()

    def supports_grounding(self) -> bool:
        return supports_grounding(self._provider_or_none())

    def call(self, prompt: str) -> str:
        provider = self._provider_or_none()
        if provider is None or not provider.is_available():
            raise LLMProviderError("LLM provider not available")
        return provider.prompt(prompt)

    def call_with_grounding(self, prompt: str) -> GroundedResponse:
        provider = self._provider_or_none()
        if provider is None or not provider.is_available():
            raise LLMProviderError("LLM provider not available")
        if not supports_grounding(provider):
            raise LLMProviderError(
                f"Provider {provider.__class__.__name__} does not support grounding"
            )
        return provider.prompt_with_grounding(prompt)
