"""Prepper-backed configuration loader for Pagewright."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import ProviderConfigurationError
from .providers import DEFAULT_MODELS, GenerationConfig, RetryPolicy

APP_NAME = "Pagewright"
PLACEHOLDER_KEY_PREFIX = "your_openrouter"


class PagewrightConfig(SchemaModel):
    """Schema describing all supported configuration options."""

    LLM_PROVIDER: Literal["openrouter", "openai"] = Field(
        default="openrouter",
        description="Chat completion service used for generation.",
    )
    OPENROUTER_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    PAGEWRIGHT_BASE_URL: str | None = Field(
        default=None,
        description="Override for the OpenAI-compatible endpoint.",
    )
    PAGEWRIGHT_APP_URL: str | None = Field(
        default=None,
        description="Sent as HTTP-Referer so the service can attribute requests.",
    )
    PAGEWRIGHT_MODELS: str | None = Field(
        default=None,
        description="Comma-separated candidate models, tried in order.",
    )
    PAGEWRIGHT_MAX_RETRIES: int = Field(default=3)
    PAGEWRIGHT_INITIAL_DELAY: float = Field(default=2.0)
    PAGEWRIGHT_MAX_DELAY: float = Field(default=30.0)
    PAGEWRIGHT_BACKOFF_MULTIPLIER: float = Field(default=2.0)
    PAGEWRIGHT_REQUEST_TIMEOUT: float = Field(default=120.0)
    PAGEWRIGHT_CHUNK_SIZE: int = Field(default=200)
    PAGEWRIGHT_MAX_CONCURRENCY: int | None = Field(default=None)
    PAGEWRIGHT_CHUNK_DELAY: float = Field(default=2.0)
    PAGEWRIGHT_MIN_TEXT_LENGTH: int = Field(default=10)
    PAGEWRIGHT_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _normalise_provider(data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {"open_router": "openrouter", "open_ai": "openai"}
                normalized = synonyms.get(normalized, normalized)
                if normalized not in {"openrouter", "openai"}:
                    normalized = "openrouter"
                data["LLM_PROVIDER"] = normalized
        return data


@lru_cache(maxsize=1)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    """Load configuration layers once and cache the immutable instance."""

    base_dir = app_dir or Path.cwd()
    try:
        provenance = ProvenanceRecorder()
        combined = _load_discovered_yaml(app_dir=base_dir, provenance=provenance)
        _merge_env_sources(
            combined,
            provenance=provenance,
            app_dir=base_dir,
            schema=PagewrightConfig,
        )

        if not combined:
            raise ConfigNotFound("No configuration sources were found.")

        model = PagewrightConfig.validate(combined, provenance=provenance)
        _validate_provider_settings(model)

        return ConfigInstance(
            model=model,
            provenance=provenance,
            env_prefix=None,
            schema_cls=PagewrightConfig,
        )
    except ConfigNotFound as exc:
        raise ProviderConfigurationError(
            "No configuration sources were found. Set OPENROUTER_API_KEY in a .env "
            "file, a config.yaml, or the environment."
        ) from exc
    except IoError as exc:
        raise ProviderConfigurationError(
            f"Configuration files could not be read: {exc}"
        ) from exc
    except SchemaError as exc:
        raise ProviderConfigurationError(f"Configuration schema error: {exc}") from exc
    except ValidationError as exc:
        raise ProviderConfigurationError(_format_validation_errors(exc.to_dict())) from exc


def _load_discovered_yaml(
    *,
    app_dir: Path,
    provenance: ProvenanceRecorder,
) -> dict[str, Any]:
    """Load YAML configuration files using Prepper's discovery rules."""

    result: dict[str, Any] = {}
    for path, label in discover_file_paths(APP_NAME, "yaml", app_dir=app_dir, extra_paths=None):
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(f"Invalid configuration file {path}: expected a mapping at the root.")
        source = _path_to_source(label, "yaml", path)
        merge_layer(result, parsed, provenance=provenance, source=source, layer="file")
    return result


def _merge_env_sources(
    target: dict[str, Any],
    *,
    provenance: ProvenanceRecorder,
    app_dir: Path,
    schema: type[SchemaModel],
) -> None:
    """Layer .env values, then process environment variables, over the files."""

    allowed = set(schema.__field_infos__.keys())

    def merge_values(values: Mapping[str, str], *, source_prefix: str) -> None:
        for key, value in sorted(values.items()):
            if key not in allowed:
                continue
            merge_layer(
                target,
                {key: value},
                provenance=provenance,
                source=f"env:{source_prefix}:{key}",
                layer="env",
            )

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        merge_values(
            {k: v for k, v in dotenv_values(dotenv_path).items() if v is not None},
            source_prefix=".env",
        )

    merge_values(dict(os.environ), source_prefix="process")


def _is_placeholder(value: str | None) -> bool:
    return value is not None and value.strip().lower().startswith(PLACEHOLDER_KEY_PREFIX)


def _validate_provider_settings(settings: PagewrightConfig) -> None:
    errors: list[str] = []

    if settings.LLM_PROVIDER == "openrouter":
        if not settings.OPENROUTER_API_KEY:
            errors.append("OPENROUTER_API_KEY is required when LLM_PROVIDER is 'openrouter'.")
        elif _is_placeholder(settings.OPENROUTER_API_KEY):
            errors.append(
                "OPENROUTER_API_KEY still holds the example placeholder; "
                "replace it with a real key."
            )
    elif not settings.OPENAI_API_KEY:
        errors.append("OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'.")

    for name in ("PAGEWRIGHT_MAX_RETRIES", "PAGEWRIGHT_CHUNK_SIZE", "PAGEWRIGHT_MIN_TEXT_LENGTH"):
        if getattr(settings, name) < 0:
            errors.append(f"{name} must not be negative.")
    if settings.PAGEWRIGHT_REQUEST_TIMEOUT <= 0:
        errors.append("PAGEWRIGHT_REQUEST_TIMEOUT must be greater than zero.")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ProviderConfigurationError(
            "Configuration validation errors detected:\n" + bullet_list
        )


def _format_validation_errors(entries: Sequence[dict[str, Any]]) -> str:
    details: list[str] = []
    for entry in entries:
        path = entry.get("path") or []
        if isinstance(path, (list, tuple)):
            location = ".".join(str(part) for part in path if part not in {None, ""})
        else:
            location = str(path)
        message = str(entry.get("message") or entry.get("msg") or "Invalid value")
        source = entry.get("source")
        origin = f" (source: {source})" if source else ""
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}{origin}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def parse_model_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return DEFAULT_MODELS
    models = tuple(item.strip() for item in value.split(",") if item.strip())
    return models or DEFAULT_MODELS


def api_key_for(settings: PagewrightConfig) -> str | None:
    if settings.LLM_PROVIDER == "openai":
        return settings.OPENAI_API_KEY
    return settings.OPENROUTER_API_KEY


def build_generation_config(settings: PagewrightConfig) -> GenerationConfig:
    """Translate validated settings into the generation client's configuration."""

    return GenerationConfig(
        models=parse_model_list(settings.PAGEWRIGHT_MODELS),
        retry=RetryPolicy(
            max_retries=settings.PAGEWRIGHT_MAX_RETRIES,
            initial_delay=settings.PAGEWRIGHT_INITIAL_DELAY,
            max_delay=settings.PAGEWRIGHT_MAX_DELAY,
            multiplier=settings.PAGEWRIGHT_BACKOFF_MULTIPLIER,
        ),
        request_timeout=settings.PAGEWRIGHT_REQUEST_TIMEOUT,
    )


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    """Return the immutable configuration instance."""

    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> PagewrightConfig:
    """Return the validated schema model for typed access."""

    return get_config(app_dir=app_dir).model()
