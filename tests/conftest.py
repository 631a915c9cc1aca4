from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Sequence, Union

import pytest

from pagewright.providers import (
    GenerationBackend,
    GenerationClient,
    GenerationConfig,
    RetryPolicy,
)

Outcome = Union[str, BaseException]
_PAYLOAD_ID = re.compile(r'"id": "([A-Z]+_\d+)",\s*"text"')


def payload_ids(messages: Sequence[Dict[str, str]]) -> List[str]:
    """Unit ids carried by the user message of a unit-mode request."""

    return _PAYLOAD_ID.findall(messages[-1]["content"])


class ScriptedBackend(GenerationBackend):
    """In-memory backend replaying outcomes per model, or delegating to a callable."""

    def __init__(self, script: Union[Dict[str, List[Outcome]], Callable[..., Outcome]]) -> None:
        self.script = script
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, *, model, messages, temperature, max_tokens, timeout):
        self.calls.append(
            {
                "model": model,
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if callable(self.script):
            outcome = self.script(model, messages)
        else:
            queue = self.script[model]
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def models_called(self) -> List[str]:
        return [call["model"] for call in self.calls]


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def make_client(fake_sleep):
    def factory(script, *, models=("model-a", "model-b"), max_retries=2, timeout=5.0):
        config = GenerationConfig(
            models=tuple(models),
            retry=RetryPolicy(max_retries=max_retries, initial_delay=1.0, max_delay=4.0),
            request_timeout=timeout,
        )
        return GenerationClient(ScriptedBackend(script), config, sleep=fake_sleep)

    return factory
