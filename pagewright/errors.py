"""Error definitions for the Pagewright localization engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .structures import CompletionReport


class ErrorCategory(Enum):
    """Categorises runtime errors for the completion report."""

    GENERATION = auto()
    PARSING = auto()
    DOCUMENT = auto()
    REPLACEMENT = auto()


class PagewrightError(Exception):
    """Base exception for all custom errors."""


class ExtractionEmpty(PagewrightError):
    """Raised when a document yields no localizable text."""


class ParseFailed(PagewrightError):
    """Raised when no parsing strategy recovered a payload."""

    def __init__(self, strategies: Sequence[str], response_length: int) -> None:
        self.strategies = list(strategies)
        self.response_length = response_length
        super().__init__(
            "Could not recover a structured payload from the model response "
            f"(tried: {', '.join(self.strategies)}; "
            f"response length: {response_length} chars)."
        )


class InvalidDocumentStructure(PagewrightError):
    """Raised when a document-mode response lacks the basic HTML skeleton."""


class DocumentTooLarge(PagewrightError):
    """Raised when a document is too large to be sent in document mode."""


class ProviderConfigurationError(PagewrightError):
    """Raised when the generation backend is misconfigured."""


class OverwriteRefusedError(PagewrightError):
    """Raised when attempting to overwrite an output without consent."""


class BackendError(PagewrightError):
    """Raised by a generation backend for a single failed request."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


class GenerationTimeout(BackendError):
    """Raised when a single request exceeds its time budget."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status=408, transient=True)


class EmptyCompletion(BackendError):
    """Raised when a backend answers without any generated text."""


class GenerationFailed(PagewrightError):
    """Raised when every model and every retry has been exhausted."""

    def __init__(
        self,
        message: str,
        *,
        last_error: Optional[BaseException] = None,
        attempted_models: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempted_models = list(attempted_models)


class AllChunksFailed(PagewrightError):
    """Raised when no chunk of a run produced a localized value."""

    def __init__(self, message: str, report: "CompletionReport") -> None:
        super().__init__(message)
        self.report = report


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None
