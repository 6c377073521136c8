"""Builds the prompt sent for each analysis task.

Default prompts live in ``prompts/<task>_prompt.txt``. When an analyst was
registered with custom instructions, those are validated and then wrapped
either directly or after being turned into task-specific instructions by
an extra LLM call ("generated" strategy).
"""

from __future__ import annotations

import logging
import os
import re
import threading
from enum import Enum
from typing import Iterable, Optional

from meeting_analyst.services.analysis_models import TranscriptEntry
from meeting_analyst.services.llm import LLMProviderError

MAX_INSTRUCTION_LENGTH = 5000

HARMFUL_PATTERNS = (
    "<script",
    "javascript:",
    "eval(",
    "function(",
    "import ",
    "require(",
    "exec(",
    "system(",
    "rm ",
    "del ",
    "format ",
    "drop table",
    "alter table",
    "truncate table",
)

STRATEGIES = ("direct", "generated")

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

_logger = logging.getLogger("analyst.prompts")


class AnalysisTask(str, Enum):
    SUMMARY = "summary"
    KEY_POINTS = "key_points"
    ACTION_ITEMS = "action_items"
    TOPICS = "topics"
    SENTIMENT_KEYWORDS = "sentiment_keywords"


# (instruction used in custom wrappers, description used in the role meta-prompt)
_TASK_TEXT = {
    AnalysisTask.SUMMARY: (
        "analyze this meeting transcript and provide a comprehensive summary.",
        "creating comprehensive meeting summaries",
    ),
    AnalysisTask.KEY_POINTS: (
        "extract the most important key points from this meeting transcript.",
        "extracting key points and important takeaways",
    ),
    AnalysisTask.ACTION_ITEMS: (
        "identify all actionable items from this meeting transcript.\n\n"
        "For each action item, specify:\n"
        "- Description of what needs to be done\n"
        "- Who is responsible (if mentioned)\n"
        "- Priority level (high/medium/low)\n"
        "- Type: task/research/investigation/follow-up/decision",
        "identifying actionable items and next steps",
    ),
    AnalysisTask.TOPICS: (
        "analyze this meeting transcript and identify the main discussion topics.\n\n"
        "For each topic, provide:\n"
        "- Topic name/title\n"
        "- Brief summary of what was discussed\n"
        "- Key participants involved\n"
        "- Approximate start time and duration",
        "analyzing discussion topics and themes",
    ),
    AnalysisTask.SENTIMENT_KEYWORDS: (
        "analyze the sentiment and extract important keywords from this meeting transcript.\n\n"
        "Determine the overall sentiment and identify key themes and important terms.",
        "analyzing sentiment and extracting keywords",
    ),
}

_OUTPUT_FORMATS = {
    AnalysisTask.SUMMARY: '{\n  "summary": "Your summary here",\n  "key_themes": ["theme1", "theme2"]\n}',
    AnalysisTask.KEY_POINTS: '{\n  "key_points": ["point1", "point2", "point3"]\n}',
    AnalysisTask.ACTION_ITEMS: (
        '{\n  "action_items": [\n    {\n'
        '      "description": "What needs to be done",\n'
        '      "assignee": "Person name (optional)",\n'
        '      "priority": "high/medium/low",\n'
        '      "type": "task/research/investigation/follow-up/decision"\n'
        "    }\n  ]\n}"
    ),
    AnalysisTask.TOPICS: (
        '{\n  "topics": [\n    {\n'
        '      "topic": "Topic name",\n'
        '      "summary": "Brief summary of discussion",\n'
        '      "participants": ["Speaker1", "Speaker2"],\n'
        '      "start_time": "HH:MM",\n'
        '      "duration_minutes": 15\n'
        "    }\n  ]\n}"
    ),
    AnalysisTask.SENTIMENT_KEYWORDS: (
        '{\n  "sentiment": "positive/negative/neutral/mixed",\n'
        '  "keywords": ["keyword1", "keyword2"],\n  "confidence": 0.85\n}'
    ),
}


def fill_placeholders(template: str, values: dict[str, str]) -> str:
    """Substitute every known ``{{name}}`` in one pass.

    Substituted text is never rescanned, so instructions or a transcript that
    contain placeholder syntax are inserted verbatim.
    """
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def is_safe_instruction(instructions: str) -> bool:
    """Basic screening of user-supplied analyst instructions."""
    if len(instructions) > MAX_INSTRUCTION_LENGTH:
        _logger.warning("Custom instructions too long (%d chars)", len(instructions))
        return False
    lowered = instructions.lower()
    for pattern in HARMFUL_PATTERNS:
        if pattern in lowered:
            _logger.warning("Potentially harmful pattern detected: %r", pattern)
            return False
    return True


def format_transcript(entries: Iterable[TranscriptEntry]) -> str:
    return "\n".join(
        f"[{entry.timestamp.strftime('%H:%M:%S')}] {entry.speaker}: {entry.text}"
        for entry in entries
    )


class PromptBuilder:
    def __init__(
        self,
        prompts_dir: str,
        custom_instructions: Optional[str] = None,
        strategy: str = "generated",
        gateway=None,
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown prompt strategy: {strategy}")
        self._prompts_dir = prompts_dir
        self._custom = (custom_instructions or "").strip()
        self._strategy = strategy
        self._gateway = gateway
        self._generated: dict[AnalysisTask, str] = {}
        self._generated_lock = threading.Lock()

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def has_custom_instructions(self) -> bool:
        return bool(self._custom)

    def _load_template(self, name: str) -> str:
        path = os.path.join(self._prompts_dir, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as exc:
            raise LLMProviderError(f"Missing prompt file: {path}") from exc

    def default_prompt(self, task: AnalysisTask, transcript: str) -> str:
        template = self._load_template(f"{task.value}_prompt.txt")
        return template.replace("{{transcript}}", transcript)

    def build(self, task: AnalysisTask, transcript: str) -> str:
        """Return the prompt for ``task`` over an already formatted transcript."""
        task = AnalysisTask(task)
        if not self._custom:
            return self.default_prompt(task, transcript)
        if not is_safe_instruction(self._custom):
            _logger.warning("Unsafe custom instructions, using default prompt task=%s", task.value)
            return self.default_prompt(task, transcript)

        if self._strategy == "generated":
            generated = self._generated_instructions(task)
            if generated:
                return self._wrap("custom_generated_prompt.txt", task, generated, transcript)
        return self._wrap("custom_direct_prompt.txt", task, self._custom, transcript)

    def _wrap(self, template_name: str, task: AnalysisTask, instructions: str, transcript: str) -> str:
        instruction, _ = _TASK_TEXT[task]
        if template_name == "custom_direct_prompt.txt":
            instruction = instruction[0].upper() + instruction[1:]
        prompt = fill_placeholders(self._load_template(template_name), {
            "task_instruction": instruction,
            "output_format": f"```json\n{_OUTPUT_FORMATS[task]}\n```",
            "instructions": instructions,
            "transcript": transcript,
        })
        _logger.debug("Built %s prompt task=%s", template_name, task.value)
        return prompt

    def _generated_instructions(self, task: AnalysisTask) -> Optional[str]:
        with self._generated_lock:
            cached = self._generated.get(task)
        if cached:
            return cached
        if self._gateway is None:
            return None

        _, description = _TASK_TEXT[task]
        meta_prompt = fill_placeholders(self._load_template("role_instructions_prompt.txt"), {
            "task_description": description,
            "role_description": self._custom,
        })
        try:
            response = self._gateway.call(meta_prompt)
        except LLMProviderError as exc:
            _logger.warning(
                "Failed to generate task instructions, falling back to direct task=%s error=%s",
                task.value, exc,
            )
            return None

        generated = (response or "").strip()
        if not generated:
            _logger.warning("Empty task instructions generated, falling back to direct task=%s", task.value)
            return None
        with self._generated_lock:
            self._generated[task] = generated
        _logger.info("Generated task instructions task=%s chars=%d", task.value, len(generated))
        return generated
