"""Per-call LLM log files for debugging prompt/response pairs.

Each call is written to ``logs/llm/<stem>_<timestamp>_<prompt_id>.log`` with
the provider metadata followed by the complete prompt and response.
"""

import os
import threading
from datetime import datetime
from typing import Optional


class LLMCallLogger:
    """Writes one structured log file per LLM call when enabled."""

    def __init__(self, logs_dir: str, enabled: bool = False) -> None:
        self._logs_dir = logs_dir
        self._enabled = enabled
        self._write_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def log_call(
        self,
        *,
        stem: str,
        prompt_id: str,
        provider: str,
        model: str,
        temperature: float,
        input_prompt: str,
        output_response: str,
        duration_ms: int,
        grounding: bool = False,
        error: Optional[str] = None,
    ) -> Optional[str]:
        """Log an LLM call to a structured file.

        Returns:
            Path to the created log file, or None when logging is disabled.
        """
        if not self._enabled:
            return None

        timestamp = datetime.now()
        date_str = timestamp.strftime("%Y-%m-%d_%H-%M-%S")
        filename = f"{stem}_{date_str}_{prompt_id}.log"
        filepath = os.path.join(self._logs_dir, filename)

        lines = [
            "=" * 80,
            f"LLM CALL LOG: {stem}",
            "=" * 80,
            "",
            "## METADATA",
            f"Timestamp: {timestamp.isoformat()}",
            f"Prompt ID: {prompt_id}",
            f"Provider: {provider}",
            f"Model: {model}",
            f"Temperature: {temperature}",
            f"Grounding: {'yes' if grounding else 'no'}",
            f"Duration: {duration_ms}ms",
            f"Input Tokens (est): {len(input_prompt) // 4}",
            f"Output Tokens (est): {len(output_response) // 4}",
        ]
        if error:
            lines.append(f"Error: {error}")

        lines.extend([
            "",
            "-" * 80,
            "## INPUT PROMPT",
            "-" * 80,
            input_prompt,
            "",
            "-" * 80,
            "## OUTPUT RESPONSE",
            "-" * 80,
            output_response or "(none)",
            "",
            "=" * 80,
            "END OF LOG",
            "=" * 80,
        ])

        with self._write_lock:
            os.makedirs(self._logs_dir, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                f.write("\n".join(lines))

        return filepath

    def list_logs(self) -> list[dict]:
        """List log files, newest first."""
        logs = []
        if not os.path.exists(self._logs_dir):
            return logs

        for filename in os.listdir(self._logs_dir):
            if not filename.endswith(".log"):
                continue
            filepath = os.path.join(self._logs_dir, filename)
            stat = os.stat(filepath)
            logs.append({
                "filename": filename,
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            })

        logs.sort(key=lambda x: x["modified"], reverse=True)
        return logs
