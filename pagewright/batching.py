"""Partitioning of text units into backend-sized chunks."""

from __future__ import annotations

import json
from typing import List, Sequence

from .structures import Chunk, TextUnit

DEFAULT_CHUNK_SIZE = 200
DEFAULT_MAX_CHARS = 24000


def estimate_size(unit: TextUnit) -> int:
    """Approximate serialized size of one unit inside the request payload."""

    entry = {"id": unit.unit_id, "text": unit.prompt_text, "context": unit.context}
    return len(json.dumps(entry, ensure_ascii=False)) + 2


class PromptBatcher:
    """Aggregates units into chunks bounded by a unit count and a character budget."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        self.chunk_size = max(1, chunk_size)
        self.max_chars = max(1, max_chars)

    def build(self, units: Sequence[TextUnit]) -> List[Chunk]:
        chunks: List[Chunk] = []
        chunk_units: List[TextUnit] = []
        running_total = 0
        chunk_id = 1

        for unit in units:
            size = estimate_size(unit)
            over_budget = running_total + size > self.max_chars
            if chunk_units and (len(chunk_units) >= self.chunk_size or over_budget):
                chunks.append(Chunk(chunk_id=chunk_id, units=chunk_units))
                chunk_id += 1
                chunk_units = []
                running_total = 0

            chunk_units.append(unit)
            running_total += size

        if chunk_units:
            chunks.append(Chunk(chunk_id=chunk_id, units=chunk_units))

        return chunks
