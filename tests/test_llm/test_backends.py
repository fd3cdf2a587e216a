"""Tests for chat-completion backends."""

import json
from unittest.mock import MagicMock

import httpx
import pytest
from anthropic import APIConnectionError, APIStatusError

from clinbox.config import AiConfig
from clinbox.exceptions import ConfigError, ParseError, TransportError
from clinbox.llm.client import (
    OPENROUTER_API_URL,
    AnthropicBackend,
    BaseChatBackend,
    OpenRouterBackend,
    build_backend,
)


def _openrouter(handler):
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    http = httpx.Client(transport=httpx.MockTransport(recording))
    return OpenRouterBackend(api_key="sk-or-test", http=http), requests


def test_base_backend_is_abstract():
    with pytest.raises(TypeError):
        BaseChatBackend()


def test_openrouter_requires_api_key():
    with pytest.raises(ConfigError, match="API key is required"):
        OpenRouterBackend(api_key="")


def test_openrouter_sends_chat_request():
    backend, requests = _openrouter(lambda r: httpx.Response(200, json={
        "choices": [
            {"message": {"role": "assistant", "content": "first"}},
            {"message": {"role": "assistant", "content": "second"}},
        ],
    }))

    text = backend.complete("system", "user", model="m-1", temperature=0.7, max_tokens=42)

    assert text == "first"
    request = requests[0]
    assert str(request.url) == OPENROUTER_API_URL
    assert request.headers["Authorization"] == "Bearer sk-or-test"
    body = json.loads(request.content)
    assert body == {
        "model": "m-1",
        "messages": [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ],
        "temperature": 0.7,
        "max_tokens": 42,
    }


def test_openrouter_http_error():
    backend, _ = _openrouter(lambda r: httpx.Response(429, text="rate limited"))
    with pytest.raises(TransportError, match="429: rate limited") as exc_info:
        backend.complete("s", "u", model="m")
    assert exc_info.value.status == 429


def test_openrouter_network_error():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    backend, _ = _openrouter(boom)
    with pytest.raises(TransportError, match="refused"):
        backend.complete("s", "u", model="m")


@pytest.mark.parametrize("payload", [{}, {"choices": []}, {"choices": [{"text": "x"}]}])
def test_openrouter_malformed_response(payload):
    backend, _ = _openrouter(lambda r: httpx.Response(200, json=payload))
    with pytest.raises(ParseError):
        backend.complete("s", "u", model="m")


def test_anthropic_backend_calls_messages_api():
    client = MagicMock()
    client.messages.create.return_value = MagicMock(content=[MagicMock(text="hello")])
    backend = AnthropicBackend(api_key="", client=client)

    assert backend.complete("sys", "usr", model="claude-x", temperature=0.3, max_tokens=500) == "hello"
    client.messages.create.assert_called_once_with(
        model="claude-x",
        max_tokens=500,
        temperature=0.3,
        system="sys",
        messages=[{"role": "user", "content": "usr"}],
    )
    assert backend.client is client


def test_anthropic_backend_empty_content():
    client = MagicMock()
    client.messages.create.return_value = MagicMock(content=[])
    with pytest.raises(ParseError):
        AnthropicBackend(api_key="", client=client).complete("s", "u", model="m")


def test_anthropic_backend_status_error():
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client = MagicMock()
    client.messages.create.side_effect = APIStatusError(
        "overloaded", response=httpx.Response(529, request=request), body=None,
    )
    with pytest.raises(TransportError) as exc_info:
        AnthropicBackend(api_key="", client=client).complete("s", "u", model="m")
    assert exc_info.value.status == 529


def test_anthropic_backend_connection_error():
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client = MagicMock()
    client.messages.create.side_effect = APIConnectionError(request=request)
    with pytest.raises(TransportError):
        AnthropicBackend(api_key="", client=client).complete("s", "u", model="m")


def test_anthropic_backend_requires_key_without_client():
    with pytest.raises(ConfigError):
        AnthropicBackend(api_key="")


def test_build_backend_selects_provider(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    assert isinstance(build_backend(AiConfig(provider="openrouter", api_key="k")), OpenRouterBackend)
    assert isinstance(build_backend(AiConfig(provider="anthropic", api_key="k")), AnthropicBackend)


def test_build_backend_uses_environment_key(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "from-env")
    backend = build_backend(AiConfig(provider="openrouter"))
    assert backend.api_key == "from-env"


def test_build_backend_unknown_provider():
    with pytest.raises(ConfigError):
        build_backend(AiConfig(provider="nope", api_key="k"))
