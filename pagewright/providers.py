"""Generation backend abstractions, retry policy and model fallback."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import openai
from openai import AsyncOpenAI

from .errors import (
    BackendError,
    EmptyCompletion,
    GenerationFailed,
    GenerationTimeout,
    ProviderConfigurationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Message = Dict[str, str]
Sleep = Callable[[float], Awaitable[Any]]

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODELS: Tuple[str, ...] = (
    "qwen/qwen3-32b",
    "qwen/qwen-2.5-72b-instruct",
    "anthropic/claude-3.5-sonnet",
    "openai/gpt-4-turbo",
    "openai/gpt-3.5-turbo",
)
# Statuses that move on to the next candidate model instead of failing.
FALLBACK_STATUSES = frozenset({400, 404, 429})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff applied to every single model attempt."""

    max_retries: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * self.multiplier**attempt, self.max_delay)

    def should_retry(self, error: BackendError) -> bool:
        if error.transient:
            return True
        status = error.status
        if status is None:
            return False
        return status in (408, 429) or 500 <= status < 600


@dataclass(frozen=True)
class GenerationConfig:
    """Model list and retry parameters for one generation client."""

    models: Tuple[str, ...] = DEFAULT_MODELS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    request_timeout: float = 120.0
    temperature: float = 0.7
    max_tokens: int = 2000


@dataclass(frozen=True)
class GenerationOptions:
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "Request",
) -> T:
    """Run the operation, retrying retryable backend errors with backoff."""

    attempt = 0
    while True:
        try:
            return await operation()
        except BackendError as exc:
            if attempt >= policy.max_retries or not policy.should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d of %d): %s. Retrying in %.1fs",
                label,
                attempt + 1,
                policy.max_retries + 1,
                exc,
                delay,
            )
            await sleep(delay)
            attempt += 1


class GenerationBackend(ABC):
    """Abstract adapter for chat-style text completion endpoints."""

    @abstractmethod
    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Message],
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> str:
        """Return the completion text or raise BackendError."""


class OpenAIChatBackend(GenerationBackend):
    """Backend for OpenAI-compatible chat completion APIs (OpenRouter by default)."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = OPENROUTER_BASE_URL,
        app_url: str | None = None,
        app_title: str = "Pagewright",
        debug: bool = False,
    ) -> None:
        if not api_key:
            raise ProviderConfigurationError(
                "Generation backend configuration missing. Set OPENROUTER_API_KEY "
                "or OPENAI_API_KEY."
            )
        self.debug = debug
        headers = {"X-Title": app_title}
        if app_url:
            headers["HTTP-Referer"] = app_url
        # Retries are driven by RetryPolicy, not by the SDK.
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            default_headers=headers,
        )

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[Message],
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> str:
        self._log_debug(
            "backend.request",
            {"model": model, "temperature": temperature, "max_tokens": max_tokens,
             "messages": list(messages)},
        )
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=list(messages),  # type: ignore[arg-type]
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
            )
        except openai.APITimeoutError as exc:
            raise GenerationTimeout(
                f"Request to {model} timed out after {timeout:g} seconds"
            ) from exc
        except openai.APIConnectionError as exc:
            raise BackendError(
                f"Could not reach the generation service: {exc}", transient=True
            ) from exc
        except openai.APIStatusError as exc:
            raise BackendError(
                f"Generation service returned {exc.status_code} for {model}: {exc.message}",
                status=exc.status_code,
            ) from exc
        except openai.APIError as exc:
            raise BackendError(
                f"Generation service error for {model}: {exc}",
                status=getattr(exc, "status_code", None),
            ) from exc

        self._log_debug("backend.response.raw", self._safe_dump_response(response))
        return self._extract_content(response, model)

    def _extract_content(self, response: Any, model: str) -> str:
        """Pull the message text out of a chat completion."""

        choices = getattr(response, "choices", None) or []
        for choice in choices:
            message = getattr(choice, "message", None)
            if message is None:
                continue
            content = getattr(message, "content", None)
            if isinstance(content, list):
                parts: List[str] = []
                for part in content:
                    text_value = getattr(part, "text", None)
                    if text_value is None and isinstance(part, dict):
                        text_value = part.get("text")
                    if text_value:
                        parts.append(str(text_value))
                content = "\n".join(parts)
            if content:
                return str(content).strip()

        raise EmptyCompletion(f"Model {model} returned an empty or unrecognised response.")

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not self.debug:
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        logger.debug("%s:\n%s", label, message)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK objects into JSON-friendly data."""

        dump = getattr(response, "model_dump", None)
        if dump is not None:
            try:
                return dump()
            except (TypeError, ValueError):
                pass
        return str(response)


class GenerationClient:
    """Sends prompts to a backend, trying candidate models in order."""

    def __init__(
        self,
        backend: GenerationBackend,
        config: GenerationConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.config = config or GenerationConfig()
        self._sleep = sleep

    def candidate_models(self, preferred: str | None = None) -> List[str]:
        models: List[str] = []
        for model in ([preferred] if preferred else []) + list(self.config.models):
            if model and model not in models:
                models.append(model)
        return models

    async def generate(
        self,
        prompt: str,
        system_instruction: str | None = None,
        options: GenerationOptions | None = None,
    ) -> str:
        options = options or GenerationOptions()
        messages: List[Message] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        temperature = (
            options.temperature
            if options.temperature is not None
            else self.config.temperature
        )
        max_tokens = options.max_tokens or self.config.max_tokens

        candidates = self.candidate_models(options.model)
        if not candidates:
            raise ProviderConfigurationError("No generation models configured.")

        attempted: List[str] = []
        last_error: BackendError | None = None
        for model in candidates:
            attempted.append(model)
            operation = functools.partial(
                self._attempt, model, messages, temperature, max_tokens
            )
            try:
                text = await retry_with_backoff(
                    operation,
                    self.config.retry,
                    sleep=self._sleep,
                    label=f"Model {model}",
                )
            except BackendError as exc:
                last_error = exc
                if self._should_fall_back(exc):
                    logger.warning("Model %s unavailable (%s), trying next model", model, exc)
                    continue
                raise GenerationFailed(
                    f"Generation with {model} failed: {exc}",
                    last_error=exc,
                    attempted_models=attempted,
                ) from exc

            logger.info("Model %s returned %d characters", model, len(text))
            return text

        raise GenerationFailed(
            f"All {len(attempted)} candidate models failed. Last error: {last_error}",
            last_error=last_error,
            attempted_models=attempted,
        ) from last_error

    async def _attempt(
        self,
        model: str,
        messages: Sequence[Message],
        temperature: float,
        max_tokens: int,
    ) -> str:
        timeout = self.config.request_timeout
        try:
            text = await asyncio.wait_for(
                self.backend.complete(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationTimeout(
                f"Request to {model} timed out after {timeout:g} seconds"
            ) from exc
        text = (text or "").strip()
        if not text:
            raise EmptyCompletion(f"Model {model} returned an empty completion.")
        return text

    @staticmethod
    def _should_fall_back(error: BackendError) -> bool:
        if isinstance(error, EmptyCompletion):
            return True
        return error.status in FALLBACK_STATUSES


def build_backend(
    name: str | None,
    *,
    api_key: str | None,
    base_url: str | None = None,
    app_url: str | None = None,
    debug: bool = False,
) -> GenerationBackend:
    """Factory to create backends by provider name."""

    normalized = (name or "openrouter").strip().lower().replace("-", "_")
    if normalized in {"openrouter", "open_router", "default"}:
        return OpenAIChatBackend(
            api_key=api_key,
            base_url=base_url or OPENROUTER_BASE_URL,
            app_url=app_url,
            debug=debug,
        )
    if normalized in {"openai", "gpt"}:
        return OpenAIChatBackend(
            api_key=api_key,
            base_url=base_url,
            app_url=app_url,
            debug=debug,
        )
    raise ProviderConfigurationError(f"Unknown generation provider '{name}'.")
