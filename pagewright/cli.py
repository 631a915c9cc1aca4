"""Command line interface for the Pagewright localizer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import re
import sys
from typing import Iterable, List, Optional

from .batching import DEFAULT_CHUNK_SIZE, PromptBatcher
from .configuration import (
    PagewrightConfig,
    api_key_for,
    build_generation_config,
    get_settings,
)
from .errors import (
    AllChunksFailed,
    OverwriteRefusedError,
    PagewrightError,
    ProviderConfigurationError,
)
from .extractor import DEFAULT_MIN_LENGTH, SECTION_NAMES, TextUnitExtractor
from .providers import GenerationClient, build_backend
from .structures import LocalizationOutput, LocalizationRequest
from .translator import DEFAULT_CHUNK_DELAY, LocalizationMode, LocalizationRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagewright",
        description="Localize a saved HTML page while preserving its markup.",
    )
    parser.add_argument("input_file", help="Path to the .html file to localize.")
    parser.add_argument(
        "-l",
        "--language",
        required=True,
        help="Target language, for example 'Spanish' or 'Hebrew'.",
    )
    parser.add_argument("-c", "--country", help="Target country for cultural adaptation.")
    parser.add_argument(
        "-s",
        "--style",
        default="professional and friendly",
        help="Writing style (default: professional and friendly).",
    )
    parser.add_argument(
        "-a",
        "--audience",
        default="general users",
        help="Target audience (default: general users).",
    )
    parser.add_argument("-i", "--instructions", help="Additional instructions for the model.")
    parser.add_argument(
        "-o",
        "--output",
        help="Output file path. Defaults to appending the target language.",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in LocalizationMode],
        default=LocalizationMode.UNIT.value,
        help="unit: exchange text fragments; document: send the whole page; "
        "auto: document mode for pages with very little text.",
    )
    parser.add_argument(
        "--group-sections",
        action="store_true",
        help="Send header/main/footer copy as grouped section outlines.",
    )
    parser.add_argument(
        "--sections",
        help=f"Comma-separated sections to localize ({', '.join(SECTION_NAMES)}).",
    )
    parser.add_argument("-m", "--model", help="Preferred model, tried before the configured list.")
    parser.add_argument("--chunk-size", type=int, help="Maximum text units per request.")
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Process up to N chunks concurrently instead of one after another.",
    )
    parser.add_argument(
        "--base-url",
        help="Original page URL used to make relative links absolute.",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting the output file if it already exists.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete backend requests and responses for troubleshooting.",
    )
    return parser


def sanitise_language_for_filename(language: str) -> str:
    """Generate a filesystem-friendly suffix from a language descriptor."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned.lower() or "localized"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    addition = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{addition}{input_path.suffix or '.html'}")


def parse_sections(value: str | None) -> Optional[List[str]]:
    if not value:
        return None
    sections = [item.strip().lower() for item in value.split(",") if item.strip()]
    unknown = [item for item in sections if item not in SECTION_NAMES]
    if unknown:
        raise ValueError(f"Unknown section(s): {', '.join(unknown)}.")
    return sections or None


def validate_paths(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError("Input file not found. Please provide a readable .html file.")
    if not input_path.is_file():
        raise PagewrightError("Input path must be a file.")

    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input page. Refusing to overwrite the source file."
        )

    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists. Rename it or pass --force."
        )


def build_client(settings: PagewrightConfig, *, debug: bool = False) -> GenerationClient:
    backend = build_backend(
        settings.LLM_PROVIDER,
        api_key=api_key_for(settings),
        base_url=settings.PAGEWRIGHT_BASE_URL,
        app_url=settings.PAGEWRIGHT_APP_URL,
        debug=debug,
    )
    return GenerationClient(backend, build_generation_config(settings))


def execute_localization(
    *,
    input_file: str,
    output_file: str | None,
    request: LocalizationRequest,
    mode: str = LocalizationMode.UNIT.value,
    group_sections: bool = False,
    sections: Optional[List[str]] = None,
    model: str | None = None,
    chunk_size: int | None = None,
    concurrency: int | None = None,
    base_url: str | None = None,
    force_overwrite: bool = False,
    provider_debug: bool = False,
    settings: PagewrightConfig | None = None,
    client: GenerationClient | None = None,
) -> tuple[int, LocalizationOutput | None, str | None]:
    """Execute a localization run and return the exit code, output, and message."""

    input_path = pathlib.Path(input_file).expanduser().resolve()
    output_path = (
        pathlib.Path(output_file).expanduser().resolve()
        if output_file
        else derive_output_path(input_path, request.target_language)
    )

    try:
        validate_paths(input_path, output_path, force_overwrite=force_overwrite)
        html = input_path.read_text(encoding="utf-8")
    except (FileNotFoundError, PagewrightError) as exc:
        return 1, None, str(exc)
    except (OSError, UnicodeDecodeError) as exc:
        return 1, None, f"Could not read {input_path}: {exc}"

    try:
        if client is None:
            settings = settings or get_settings()
            client = build_client(
                settings,
                debug=provider_debug or settings.PAGEWRIGHT_PROVIDER_DEBUG,
            )
        runner = LocalizationRunner(
            client,
            mode=mode,
            model=model,
            extractor=TextUnitExtractor(
                min_length=(
                    settings.PAGEWRIGHT_MIN_TEXT_LENGTH if settings else DEFAULT_MIN_LENGTH
                ),
                group_sections=group_sections,
                sections=sections,
            ),
            batcher=PromptBatcher(
                chunk_size
                or (settings.PAGEWRIGHT_CHUNK_SIZE if settings else DEFAULT_CHUNK_SIZE)
            ),
            max_concurrency=(
                concurrency
                if concurrency is not None
                else (settings.PAGEWRIGHT_MAX_CONCURRENCY if settings else None)
            ),
            chunk_delay=settings.PAGEWRIGHT_CHUNK_DELAY if settings else DEFAULT_CHUNK_DELAY,
        )
        output = asyncio.run(runner.localize(html, request, base_url=base_url))
    except ProviderConfigurationError as exc:
        return 1, None, str(exc)
    except AllChunksFailed as exc:
        return 2, None, f"{exc} ({len(exc.report.error_messages)} errors recorded)"
    except PagewrightError as exc:
        return 1, None, str(exc)
    except KeyboardInterrupt:
        return 2, None, "Localization interrupted by user."

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(output.html, encoding="utf-8")
    return 0, output, str(output_path)


def print_summary(output: LocalizationOutput, output_path: str | None = None) -> None:
    """Output a friendly report once processing completes."""

    report = output.report
    print("\nLocalization complete.")
    if output_path:
        print(f"  Output file:     {output_path}")
    print(f"  Mode:            {report.mode}")
    print(
        "  Text units:      "
        f"{report.units_processed} localized / {report.units_total} total "
        f"({report.units_unresolved} unresolved, {report.units_skipped} skipped)"
    )
    if report.chunks_total:
        print(f"  Chunks:          {report.chunks_total} ({report.chunks_failed} failed)")
    if report.model:
        print(f"  Model:           {report.model}")
    target = report.target_language
    if report.target_country:
        target += f" ({report.target_country})"
    print(f"  Target:          {target}")
    print(f"  Completeness:    {report.completeness:.0%}")
    print(f"  Elapsed time:    {report.elapsed_seconds:.2f} seconds")
    if report.error_messages:
        print("  Notes:")
        for message in report.error_messages:
            print(f"    - {message}")


def configure_logging(*, verbose: bool, provider_debug: bool) -> None:
    if provider_debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        sections = parse_sections(args.sections)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        settings = get_settings()
    except ProviderConfigurationError as exc:
        print(exc)
        return 1
    provider_debug = bool(args.debug_provider or settings.PAGEWRIGHT_PROVIDER_DEBUG)
    configure_logging(verbose=args.verbose, provider_debug=provider_debug)

    request = LocalizationRequest(
        target_language=args.language,
        target_country=args.country,
        writing_style=args.style,
        audience=args.audience,
        instructions=args.instructions,
    )
    exit_code, output, message = execute_localization(
        input_file=args.input_file,
        output_file=args.output,
        request=request,
        mode=args.mode,
        group_sections=args.group_sections,
        sections=sections,
        model=args.model,
        chunk_size=args.chunk_size,
        concurrency=args.concurrency,
        base_url=args.base_url,
        force_overwrite=args.force,
        provider_debug=provider_debug,
        settings=settings,
    )

    if output:
        print_summary(output, message)
    elif message:
        print(message)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
