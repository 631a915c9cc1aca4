import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from pagewright.errors import (
    BackendError,
    EmptyCompletion,
    GenerationFailed,
    GenerationTimeout,
    ProviderConfigurationError,
)
from pagewright.providers import (
    GenerationBackend,
    GenerationOptions,
    OpenAIChatBackend,
    RetryPolicy,
    build_backend,
)


def test_returns_trimmed_text_from_first_model(make_client):
    client = make_client({"model-a": ["  hola  "]})

    text = asyncio.run(client.generate("prompt", "system"))

    assert text == "hola"
    call = client.backend.calls[0]
    assert call["model"] == "model-a"
    assert call["messages"][0] == {"role": "system", "content": "system"}
    assert call["messages"][1] == {"role": "user", "content": "prompt"}


def test_options_override_sampling_parameters(make_client):
    client = make_client({"model-a": ["ok"]})

    asyncio.run(
        client.generate("prompt", options=GenerationOptions(temperature=0.1, max_tokens=123))
    )

    call = client.backend.calls[0]
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 123
    assert len(call["messages"]) == 1


def test_server_errors_are_retried_with_backoff(make_client, sleeps):
    client = make_client(
        {
            "model-a": [
                BackendError("unavailable", status=503),
                BackendError("unavailable", status=502),
                "done",
            ]
        }
    )

    assert asyncio.run(client.generate("prompt")) == "done"
    assert sleeps == [1.0, 2.0]
    assert client.backend.models_called == ["model-a"] * 3


def test_backoff_delay_is_capped():
    policy = RetryPolicy(max_retries=6, initial_delay=2.0, max_delay=30.0, multiplier=2.0)

    assert [policy.delay_for(attempt) for attempt in range(6)] == [2, 4, 8, 16, 30, 30]


def test_not_found_falls_back_without_retry(make_client, sleeps):
    client = make_client(
        {"model-a": [BackendError("no such model", status=404)], "model-b": ["ok"]}
    )

    assert asyncio.run(client.generate("prompt")) == "ok"
    assert client.backend.models_called == ["model-a", "model-b"]
    assert sleeps == []


def test_rate_limit_is_retried_then_falls_back(make_client, sleeps):
    client = make_client(
        {"model-a": [BackendError("slow down", status=429)], "model-b": ["ok"]}
    )

    assert asyncio.run(client.generate("prompt")) == "ok"
    assert client.backend.models_called == ["model-a"] * 3 + ["model-b"]
    assert sleeps == [1.0, 2.0]


def test_authentication_error_fails_immediately(make_client):
    client = make_client(
        {"model-a": [BackendError("bad key", status=401)], "model-b": ["never"]}
    )

    with pytest.raises(GenerationFailed) as excinfo:
        asyncio.run(client.generate("prompt"))

    assert excinfo.value.attempted_models == ["model-a"]
    assert excinfo.value.last_error.status == 401
    assert client.backend.models_called == ["model-a"]


def test_exhausted_server_errors_do_not_fall_back(make_client):
    client = make_client(
        {"model-a": [BackendError("down", status=500)], "model-b": ["never"]}
    )

    with pytest.raises(GenerationFailed):
        asyncio.run(client.generate("prompt"))

    assert "model-b" not in client.backend.models_called


def test_empty_completion_moves_to_next_model(make_client):
    client = make_client({"model-a": ["   "], "model-b": ["filled"]})

    assert asyncio.run(client.generate("prompt")) == "filled"


def test_every_model_exhausted_raises_with_attempts(make_client):
    client = make_client(
        {
            "model-a": [BackendError("missing", status=404)],
            "model-b": [BackendError("bad request", status=400)],
        }
    )

    with pytest.raises(GenerationFailed) as excinfo:
        asyncio.run(client.generate("prompt"))

    assert excinfo.value.attempted_models == ["model-a", "model-b"]
    assert excinfo.value.last_error.status == 400


def test_preferred_model_is_tried_first_once(make_client):
    client = make_client({"model-b": ["from b"]})

    assert client.candidate_models("model-b") == ["model-b", "model-a"]
    text = asyncio.run(client.generate("prompt", options=GenerationOptions(model="model-b")))
    assert text == "from b"


class SlowBackend(GenerationBackend):
    def __init__(self):
        self.calls = 0

    async def complete(self, *, model, messages, temperature, max_tokens, timeout):
        self.calls += 1
        await asyncio.sleep(1)
        return "late"


def test_attempt_timeout_becomes_typed_error(make_client):
    client = make_client({}, models=("model-a",), max_retries=1, timeout=0.01)
    backend = SlowBackend()
    client.backend = backend

    with pytest.raises(GenerationFailed) as excinfo:
        asyncio.run(client.generate("prompt"))

    assert isinstance(excinfo.value.last_error, GenerationTimeout)
    assert excinfo.value.last_error.status == 408
    assert backend.calls == 2


def test_build_backend_selects_openai_compatible_adapter():
    backend = build_backend("OpenRouter", api_key="sk-test", app_url="https://example.com")

    assert isinstance(backend, OpenAIChatBackend)


def test_build_backend_rejects_unknown_provider():
    with pytest.raises(ProviderConfigurationError):
        build_backend("carrier-pigeon", api_key="sk-test")


def test_backend_requires_api_key():
    with pytest.raises(ProviderConfigurationError):
        build_backend("openai", api_key=None)


def test_extract_content_joins_list_parts():
    backend = OpenAIChatBackend(api_key="sk-test")
    response = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=[{"text": "first"}, SimpleNamespace(text="second")])
            )
        ]
    )

    assert backend._extract_content(response, "model-a") == "first\nsecond"


def test_extract_content_without_choices_is_empty_completion():
    backend = OpenAIChatBackend(api_key="sk-test")

    with pytest.raises(EmptyCompletion):
        backend._extract_content(SimpleNamespace(choices=None), "model-a")


def test_unexpected_sdk_error_becomes_backend_error():
    backend = OpenAIChatBackend(api_key="sk-test")
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")

    async def create(**kwargs):
        raise openai.APIError("response did not match the schema", request, body=None)

    backend._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(
            backend.complete(
                model="model-a",
                messages=[{"role": "user", "content": "hi"}],
                temperature=0.3,
                max_tokens=10,
                timeout=5.0,
            )
        )

    assert excinfo.value.status is None
    assert not excinfo.value.transient
    assert isinstance(excinfo.value.__cause__, openai.APIError)
