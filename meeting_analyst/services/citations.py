from __future__ import annotations

import logging
from typing import Iterable, Optional

from meeting_analyst.services.llm import GroundingMetadata

_logger = logging.getLogger("analyst.citations")

BULLET = "• "


def _is_char_boundary(data: bytes, index: int) -> bool:
    if index in (0, len(data)):
        return True
    # UTF-8 continuation bytes look like 0b10xxxxxx.
    return (data[index] & 0xC0) != 0x80


def add_citations(text: str, metadata: Optional[GroundingMetadata]) -> str:
    """Splice ``[n](uri)`` markers into ``text`` at each support's end offset.

    Offsets are UTF-8 byte offsets. Supports are applied from the highest
    end offset down so earlier insertions never shift later targets.
    """
    if metadata is None or not metadata.grounding_supports:
        return text

    chunks = metadata.grounding_chunks
    data = text.encode("utf-8")
    supports = sorted(metadata.grounding_supports, key=lambda s: s.segment.end_index, reverse=True)

    for support in supports:
        end_index = support.segment.end_index
        if end_index < 0 or end_index > len(data) or not support.chunk_indices:
            _logger.debug("Skipping citation support end_index=%s", end_index)
            continue
        if not _is_char_boundary(data, end_index):
            _logger.debug("Skipping citation inside multi-byte character end_index=%s", end_index)
            continue

        links = [
            f"[{index + 1}]({chunks[index].uri})"
            for index in support.chunk_indices
            if 0 <= index < len(chunks)
        ]
        if not links:
            continue
        marker = (" " + ", ".join(links)).encode("utf-8")
        data = data[:end_index] + marker + data[end_index:]

    return data.decode("utf-8")


def bullet_list(points: Iterable[str]) -> str:
    points = list(points)
    if not points:
        return ""
    return BULLET + f"\n{BULLET}".join(points)
