"""Analysis tuning knobs, read from the ``analysis`` section of config.json."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

_logger = logging.getLogger("analyst.settings")

DEFAULT_WINDOWS = {
    "summary": 50,
    "key_points": 30,
    "action_items": 40,
    "topics": 50,
    "sentiment_keywords": 20,
}


def read_config(config_path: str | None) -> dict:
    """Read config from file, returning empty dict if missing or unreadable."""
    if not config_path or not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        _logger.warning("Failed to read config file: %s error=%s", config_path, exc)
        return {}
    if not isinstance(data, dict):
        _logger.warning("Ignoring non-object config file: %s", config_path)
        return {}
    return data


@dataclass
class AnalysisSettings:
    interval_seconds: float = 300.0
    batch_size: int = 20
    windows: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WINDOWS))
    llm_timeout_seconds: int = 60
    temperature: float = 0.5
    max_output_tokens: int = 2000

    def window_for(self, task: str) -> int:
        return self.windows.get(task, DEFAULT_WINDOWS.get(task, 50))

    @classmethod
    def from_config(cls, config: dict) -> "AnalysisSettings":
        section = config.get("analysis", {})
        if not isinstance(section, dict):
            return cls()
        settings = cls()
        try:
            settings.interval_seconds = float(section.get("interval_seconds", settings.interval_seconds))
            settings.batch_size = max(1, int(section.get("batch_size", settings.batch_size)))
            settings.llm_timeout_seconds = int(
                section.get("llm_timeout_seconds", settings.llm_timeout_seconds)
            )
            settings.temperature = float(section.get("temperature", settings.temperature))
            settings.max_output_tokens = int(
                section.get("max_output_tokens", settings.max_output_tokens)
            )
            windows = section.get("windows", {})
            if isinstance(windows, dict):
                for task, size in windows.items():
                    if task in settings.windows:
                        settings.windows[task] = max(1, int(size))
        except (TypeError, ValueError) as exc:
            _logger.warning("Invalid analysis settings, using defaults: %s", exc)
            return cls()
        return settings

    @classmethod
    def load(cls, config_path: str | None) -> "AnalysisSettings":
        return cls.from_config(read_config(config_path))
