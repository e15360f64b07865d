from __future__ import annotations

import pytest

from chat_backend.errors import ProviderUnavailable
from chat_backend.providers.ollama import OllamaClient, normalize_ollama_base_url
from chat_backend.providers.openai_compatible import OpenAICompatibleClient
from chat_backend.providers.router import (
    ProviderRouter,
    infer_provider_from_hint,
    normalize_provider_name,
    split_provider_tag,
)
from chat_backend.providers.types import ProviderConnection, ProviderConnections
from chat_backend.repository import ModelRecord

from test_model_resolution import FakeRegistry


def _connections(*items: ProviderConnection) -> ProviderConnections:
    return ProviderConnections(
        version=3, connections={item.provider: item for item in items}
    )


ALL_CONNECTIONS = _connections(
    ProviderConnection("openai", None, "sk-openai"),
    ProviderConnection("openrouter", "https://openrouter.ai/api/v1", "sk-or"),
    ProviderConnection("ollama", "http://gpu-box:11434/", None),
    ProviderConnection("openai-compatible", "http://vllm:8000/v1", "token"),
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("OpenRouter", "openrouter"),
        ("ollama-local", "ollama"),
        ("openai_compatible", "openai-compatible"),
        ("OpenAI", "openai"),
        ("anthropic", None),
        (None, None),
    ],
)
def test_normalize_provider_name(raw: str | None, expected: str | None) -> None:
    assert normalize_provider_name(raw) == expected


@pytest.mark.parametrize(
    "hint, expected",
    [
        ("http://localhost:11434", "ollama"),
        ("ollama/llama3", "ollama"),
        ("openrouter/auto", "openrouter"),
        ("https://example.com/v1", "openai"),
        ("mistral-large", None),
    ],
)
def test_infer_provider_from_hint(hint: str, expected: str | None) -> None:
    assert infer_provider_from_hint(hint) == expected


def test_split_provider_tag() -> None:
    assert split_provider_tag("ollama:llama3:8b") == ("ollama", "llama3:8b")
    assert split_provider_tag("OpenRouter:meta/llama") == ("openrouter", "meta/llama")
    assert split_provider_tag("llama3:8b") == (None, "llama3:8b")
    assert split_provider_tag("openai:") == (None, "openai:")


def test_normalize_ollama_base_url() -> None:
    assert normalize_ollama_base_url(None) == "http://localhost:11434/api"
    assert normalize_ollama_base_url("http://host:11434/") == "http://host:11434/api"
    assert normalize_ollama_base_url("http://host/api/") == "http://host/api"


@pytest.mark.anyio
async def test_record_provider_and_provider_id_drive_routing() -> None:
    record = ModelRecord(
        id="m1",
        name="Claude via OR",
        provider="openrouter",
        provider_id="anthropic/claude-3.5-sonnet",
    )
    router = ProviderRouter(FakeRegistry([record]))

    resolution = await router.resolve("m1", ALL_CONNECTIONS)

    assert resolution.provider_name == "openrouter"
    assert resolution.provider_model_id == "anthropic/claude-3.5-sonnet"
    assert resolution.base_url == "https://openrouter.ai/api/v1"
    handle = resolution.get_model_handle()
    assert isinstance(handle.client, OpenAICompatibleClient)
    assert handle.client.provider == "openrouter"


@pytest.mark.anyio
async def test_bare_provider_id_matches_registered_model() -> None:
    record = ModelRecord(
        id="m2",
        name="Local Llama",
        provider="ollama",
        provider_id="llama3:8b",
        meta={"provider_model_id": "llama3:8b-instruct"},
    )
    router = ProviderRouter(FakeRegistry([record]))

    resolution = await router.resolve("llama3:8b", ALL_CONNECTIONS)

    assert resolution.provider_name == "ollama"
    assert resolution.provider_model_id == "llama3:8b-instruct"
    assert resolution.base_url == "http://gpu-box:11434/api"
    assert isinstance(resolution.get_model_handle().client, OllamaClient)


@pytest.mark.anyio
async def test_unregistered_ref_defaults_to_openai_base_url() -> None:
    router = ProviderRouter(FakeRegistry([]))

    resolution = await router.resolve("gpt-4o", ALL_CONNECTIONS)

    assert resolution.provider_name == "openai"
    assert resolution.base_url == "https://api.openai.com/v1"
    assert resolution.provider_model_id == "gpt-4o"


@pytest.mark.anyio
async def test_name_match_resolves_record() -> None:
    record = ModelRecord(id="m3", name="vllm-qwen", provider="openai-compatible")
    router = ProviderRouter(FakeRegistry([record]))

    resolution = await router.resolve("vllm-qwen", ALL_CONNECTIONS)

    assert resolution.provider_name == "openai-compatible"
    assert resolution.base_url == "http://vllm:8000/v1"


@pytest.mark.anyio
async def test_missing_connection_raises() -> None:
    router = ProviderRouter(FakeRegistry([]))

    with pytest.raises(ProviderUnavailable) as excinfo:
        await router.resolve("openrouter:auto", _connections())

    assert excinfo.value.status_code == 503


@pytest.mark.anyio
async def test_missing_api_key_raises_except_for_ollama() -> None:
    router = ProviderRouter(FakeRegistry([]))
    connections = _connections(
        ProviderConnection("openai", None, "  "),
        ProviderConnection("ollama", None, None),
    )

    with pytest.raises(ProviderUnavailable):
        await router.resolve("gpt-4o", connections)

    resolution = await router.resolve("ollama:llama3", connections)
    assert resolution.base_url == "http://localhost:11434/api"


@pytest.mark.anyio
async def test_openai_compatible_requires_base_url() -> None:
    router = ProviderRouter(FakeRegistry([]))
    connections = _connections(ProviderConnection("openai-compatible", None, "key"))

    with pytest.raises(ProviderUnavailable):
        await router.resolve("openai-compatible:qwen", connections)


@pytest.mark.anyio
async def test_empty_reference_raises() -> None:
    router = ProviderRouter(FakeRegistry([]))

    with pytest.raises(ProviderUnavailable):
        await router.resolve("   ", ALL_CONNECTIONS)
