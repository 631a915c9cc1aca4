"""High-level orchestration for page localization."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .batching import PromptBatcher
from .documents import SoupDocument
from .errors import (
    AllChunksFailed,
    DocumentTooLarge,
    ExtractionEmpty,
    GenerationFailed,
    ParseFailed,
    PagewrightError,
)
from .extractor import TextUnitExtractor
from .parsing import parse_document, parse_units
from .policy import FailurePolicy
from .prompts import (
    DOCUMENT_SYSTEM_INSTRUCTION,
    UNIT_SYSTEM_INSTRUCTION,
    build_document_prompt,
    build_unit_prompt,
)
from .providers import GenerationClient, GenerationOptions
from .replacement import ReplacementEngine
from .structures import (
    Chunk,
    CompletionReport,
    LocalizationOutput,
    LocalizationRequest,
    LocalizationResult,
    PageSource,
    TextUnit,
)

logger = logging.getLogger(__name__)

DOCUMENT_SIZE_LIMIT = 100_000
DOCUMENT_MODE_THRESHOLD = 3
DEFAULT_CHUNK_DELAY = 2.0

UNIT_OPTIONS = {"temperature": 0.3, "max_tokens": 8000}
DOCUMENT_OPTIONS = {"temperature": 0.1, "max_tokens": 16000}


class LocalizationMode(str, Enum):
    UNIT = "unit"
    DOCUMENT = "document"
    AUTO = "auto"


class RunStage(Enum):
    """Observable lifecycle of a single run."""

    IDLE = "idle"
    EXTRACTING = "extracting"
    BATCHING = "batching"
    GENERATING = "generating"
    PARSING = "parsing"
    REPLACING = "replacing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ChunkOutcome:
    """What one chunk sub-flow produced."""

    chunk: Chunk
    values: Dict[str, str] = field(default_factory=dict)
    error: Optional[PagewrightError] = None
    stage: RunStage = RunStage.GENERATING

    @property
    def ok(self) -> bool:
        return self.error is None


class LocalizationRunner:
    """Coordinates extraction, generation, parsing and replacement."""

    def __init__(
        self,
        client: GenerationClient,
        *,
        mode: LocalizationMode | str = LocalizationMode.UNIT,
        model: str | None = None,
        extractor: TextUnitExtractor | None = None,
        batcher: PromptBatcher | None = None,
        replacement: ReplacementEngine | None = None,
        max_concurrency: int | None = None,
        chunk_delay: float = DEFAULT_CHUNK_DELAY,
        document_mode_threshold: int = DOCUMENT_MODE_THRESHOLD,
        document_max_bytes: int = DOCUMENT_SIZE_LIMIT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.mode = LocalizationMode(mode)
        self.model = model
        self.extractor = extractor or TextUnitExtractor()
        self.batcher = batcher or PromptBatcher()
        self.replacement = replacement or ReplacementEngine()
        self.max_concurrency = max_concurrency if max_concurrency and max_concurrency > 0 else None
        self.chunk_delay = chunk_delay
        self.document_mode_threshold = document_mode_threshold
        self.document_max_bytes = document_max_bytes
        self._sleep = sleep

        self.stage = RunStage.IDLE
        self.policy = FailurePolicy()

    async def localize_page(
        self,
        page: PageSource,
        request: LocalizationRequest,
    ) -> LocalizationOutput:
        return await self.localize(page.html, request, base_url=page.final_url)

    async def localize(
        self,
        html: str,
        request: LocalizationRequest,
        base_url: str | None = None,
    ) -> LocalizationOutput:
        start_time = time.monotonic()
        self.policy = FailurePolicy()
        try:
            self.stage = RunStage.EXTRACTING
            document = SoupDocument(html)
            units = self.extractor.extract(document)
            if not units:
                raise ExtractionEmpty("No localizable text found in the document.")
            mode = self._resolve_mode(html, units)

            if mode is LocalizationMode.DOCUMENT:
                localized, report = await self._run_document(html, units, request, base_url)
            else:
                localized, report = await self._run_units(document, units, request, base_url)
        except BaseException:
            self.stage = RunStage.FAILED
            raise

        report.elapsed_seconds = time.monotonic() - start_time
        self.stage = RunStage.DONE
        logger.info(
            "Localized %d of %d units into %s (%.0f%% complete)",
            report.units_processed,
            report.units_total,
            request.target_language,
            report.completeness * 100,
        )
        return LocalizationOutput(
            html=localized,
            report=report,
            request=request,
            source_url=base_url,
        )

    # --- Mode selection ---------------------------------------------------

    def _resolve_mode(self, html: str, units: Sequence[TextUnit]) -> LocalizationMode:
        if self.mode is not LocalizationMode.AUTO:
            return self.mode
        size = len(html.encode("utf-8"))
        if len(units) < self.document_mode_threshold and size <= self.document_max_bytes:
            logger.info("Only %d units extracted, using document mode", len(units))
            return LocalizationMode.DOCUMENT
        return LocalizationMode.UNIT

    # --- Unit mode --------------------------------------------------------

    async def _run_units(
        self,
        document: SoupDocument,
        units: List[TextUnit],
        request: LocalizationRequest,
        base_url: str | None,
    ) -> Tuple[str, CompletionReport]:
        self.stage = RunStage.BATCHING
        chunks = self.batcher.build(units)
        logger.info("Prepared %d text units in %d chunks", len(units), len(chunks))

        self.stage = RunStage.GENERATING
        outcomes = await self._run_chunks(chunks, request)

        self.stage = RunStage.PARSING
        result = LocalizationResult()
        missing = 0
        for outcome in outcomes:
            if not outcome.ok:
                continue
            accepted = result.merge(outcome.values, allowed_ids=outcome.chunk.unit_ids)
            absent = len(outcome.chunk.units) - len(accepted)
            if absent:
                logger.warning(
                    "Chunk %d returned no value for %d of %d units",
                    outcome.chunk.chunk_id,
                    absent,
                    len(outcome.chunk.units),
                )
            missing += absent

        report = CompletionReport(
            mode=LocalizationMode.UNIT.value,
            units_total=len(units),
            units_processed=0,
            units_unresolved=len(units),
            units_missing=missing,
            chunks_total=len(chunks),
            chunks_failed=len(self.policy.failed_chunks),
            target_language=request.target_language,
            target_country=request.target_country,
            model=self._report_model(),
            error_messages=self.policy.messages,
        )
        if self.policy.all_failed(len(chunks)):
            raise AllChunksFailed(
                f"All {len(chunks)} chunks failed; the document was left unchanged.",
                report,
            )

        self.stage = RunStage.REPLACING
        stats = self.replacement.apply(document, units, result)
        for unit_id in stats.skipped:
            self.policy.record_skip(unit_id)
        if base_url:
            document.absolutize_urls(base_url)

        report.units_processed = stats.processed
        report.units_unresolved = len(units) - stats.processed
        report.units_skipped = len(stats.skipped)
        return document.serialize(), report

    async def _run_chunks(
        self,
        chunks: Sequence[Chunk],
        request: LocalizationRequest,
    ) -> List[ChunkOutcome]:
        if self.max_concurrency:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def bounded(chunk: Chunk) -> ChunkOutcome:
                async with semaphore:
                    return await self._process_chunk(chunk, request)

            tasks = [asyncio.ensure_future(bounded(chunk)) for chunk in chunks]
            try:
                return list(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        outcomes: List[ChunkOutcome] = []
        for index, chunk in enumerate(chunks):
            if index and self.chunk_delay > 0:
                await self._sleep(self.chunk_delay)
            outcomes.append(await self._process_chunk(chunk, request))
        return outcomes

    async def _process_chunk(
        self,
        chunk: Chunk,
        request: LocalizationRequest,
    ) -> ChunkOutcome:
        outcome = ChunkOutcome(chunk=chunk)
        logger.info("Processing chunk %d (%d units)", chunk.chunk_id, len(chunk.units))
        try:
            raw = await self.client.generate(
                build_unit_prompt(chunk, request),
                UNIT_SYSTEM_INSTRUCTION,
                GenerationOptions(model=self.model, **UNIT_OPTIONS),
            )
            outcome.stage = RunStage.PARSING
            outcome.values = parse_units(raw)
        except (GenerationFailed, ParseFailed) as exc:
            outcome.error = exc
            self.policy.handle_chunk_failure(chunk.chunk_id, exc)
            return outcome

        self.policy.record_success(chunk.chunk_id)
        logger.info("Chunk %d returned %d values", chunk.chunk_id, len(outcome.values))
        return outcome

    # --- Document mode ----------------------------------------------------

    async def _run_document(
        self,
        html: str,
        units: Sequence[TextUnit],
        request: LocalizationRequest,
        base_url: str | None,
    ) -> Tuple[str, CompletionReport]:
        size = len(html.encode("utf-8"))
        if size > self.document_max_bytes:
            raise DocumentTooLarge(
                f"Document is {size // 1024}KB; document mode accepts at most "
                f"{self.document_max_bytes // 1000}KB. Use unit mode instead."
            )
        if size > self.document_max_bytes // 2:
            logger.warning("Document is %dKB; the response may be truncated", size // 1024)

        self.stage = RunStage.GENERATING
        raw = await self.client.generate(
            build_document_prompt(html, request),
            DOCUMENT_SYSTEM_INSTRUCTION,
            GenerationOptions(model=self.model, **DOCUMENT_OPTIONS),
        )

        self.stage = RunStage.PARSING
        localized = parse_document(raw)

        self.stage = RunStage.REPLACING
        if base_url:
            document = SoupDocument(localized)
            document.absolutize_urls(base_url)
            localized = document.serialize()

        report = CompletionReport(
            mode=LocalizationMode.DOCUMENT.value,
            units_total=len(units),
            units_processed=len(units),
            units_unresolved=0,
            chunks_total=1,
            target_language=request.target_language,
            target_country=request.target_country,
            model=self._report_model(),
        )
        return localized, report

    def _report_model(self) -> str | None:
        candidates = self.client.candidate_models(self.model)
        return candidates[0] if candidates else None


def localize_html(
    html: str,
    request: LocalizationRequest,
    *,
    client: GenerationClient,
    base_url: str | None = None,
    **runner_options: Any,
) -> LocalizationOutput:
    """Synchronous convenience wrapper around LocalizationRunner.localize."""

    runner = LocalizationRunner(client, **runner_options)
    return asyncio.run(runner.localize(html, request, base_url=base_url))
