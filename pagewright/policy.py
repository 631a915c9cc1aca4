"""Failure bookkeeping for localization runs."""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from .errors import (
    ErrorCategory,
    ErrorRecord,
    InvalidDocumentStructure,
    ParseFailed,
)

logger = logging.getLogger(__name__)


def categorize(error: BaseException) -> ErrorCategory:
    if isinstance(error, ParseFailed):
        return ErrorCategory.PARSING
    if isinstance(error, InvalidDocumentStructure):
        return ErrorCategory.DOCUMENT
    return ErrorCategory.GENERATION


class FailurePolicy:
    """Keeps chunk failures at chunk granularity so a run can carry on.

    Consecutive failures of the same category are tracked so repeated
    backend trouble is surfaced loudly in the log.
    """

    CONSECUTIVE_LIMIT = 3

    def __init__(self) -> None:
        self.records: List[ErrorRecord] = []
        self.failed_chunks: Set[int] = set()
        self.succeeded_chunks: Set[int] = set()
        self.skipped_units: List[str] = []
        self.last_category: Optional[ErrorCategory] = None
        self.consecutive = 0

    def record_success(self, chunk_id: Optional[int] = None) -> None:
        """Reset consecutive counters after successful work."""

        if chunk_id is not None:
            self.succeeded_chunks.add(chunk_id)
        self.consecutive = 0
        self.last_category = None

    def handle_chunk_failure(self, chunk_id: int, error: BaseException) -> ErrorRecord:
        category = categorize(error)
        record = ErrorRecord(
            category=category,
            message=f"Chunk {chunk_id} failed: {error}",
            details=type(error).__name__,
        )
        self.records.append(record)
        self.failed_chunks.add(chunk_id)

        if self.last_category == category:
            self.consecutive += 1
        else:
            self.last_category = category
            self.consecutive = 1

        if self.consecutive >= self.CONSECUTIVE_LIMIT:
            logger.error(
                "%s (%d consecutive %s failures)",
                record.message,
                self.consecutive,
                category.name.lower(),
            )
        else:
            logger.warning(record.message)
        return record

    def record_skip(self, unit_id: str, reason: str = "no matching node") -> None:
        self.skipped_units.append(unit_id)
        self.records.append(
            ErrorRecord(
                category=ErrorCategory.REPLACEMENT,
                message=f"Skipped {unit_id}: {reason}",
            )
        )

    def all_failed(self, chunks_total: int) -> bool:
        return chunks_total > 0 and len(self.failed_chunks) >= chunks_total

    @property
    def messages(self) -> List[str]:
        return [
            record.message
            for record in self.records
            if record.category is not ErrorCategory.REPLACEMENT
        ]
