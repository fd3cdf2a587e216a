"""Chat-completion backends: OpenRouter (httpx) and Anthropic (SDK).

Both take a model id, a system instruction, one user message, a temperature
and an output-token bound, and return the first candidate's text. No
retries: each call is attempted once and any failure is raised.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx
from anthropic import Anthropic, APIConnectionError, APIError, APIStatusError

from clinbox.config import AiConfig
from clinbox.exceptions import ConfigError, ParseError, TransportError

logger = logging.getLogger(__name__)

OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"


class BaseChatBackend(ABC):
    """Abstract single request/response chat completion."""

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_content: str,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Return the text of the first candidate completion."""
        ...


class OpenRouterBackend(BaseChatBackend):
    """OpenRouter's OpenAI-compatible chat completions endpoint.

    No request timeout is set: a hung backend blocks the caller.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENROUTER_API_URL,
        http: httpx.Client | None = None,
    ):
        if not api_key:
            raise ConfigError(
                "OpenRouter API key is required. "
                "Run 'clinbox config ai.api_key KEY' or set OPENROUTER_API_KEY."
            )
        self.api_key = api_key
        self.base_url = base_url
        self._http = http or httpx.Client(timeout=None)

    def complete(
        self,
        system_prompt: str,
        user_content: str,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        try:
            response = self._http.post(
                self.base_url,
                json={
                    "model": model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "HTTP-Referer": "https://github.com/clinbox",
                    "X-Title": "Clinbox",
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to call AI API: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"AI API error {response.status_code}: {response.text}",
                status=response.status_code,
            )
        try:
            choices = response.json()["choices"]
            return choices[0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError(f"Failed to parse AI response: {e}") from e


class AnthropicBackend(BaseChatBackend):
    """Anthropic Messages API via the official SDK, with SDK retries off."""

    def __init__(self, api_key: str, client: Anthropic | None = None):
        if not api_key and client is None:
            raise ConfigError(
                "Anthropic API key is required. "
                "Run 'clinbox config ai.api_key KEY' or set ANTHROPIC_API_KEY."
            )
        self._client = client or Anthropic(api_key=api_key, max_retries=0, timeout=None)

    @property
    def client(self) -> Anthropic:
        """Access the underlying Anthropic SDK client for advanced usage."""
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_content: str,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        try:
            response = self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_content}],
            )
        except APIStatusError as e:
            raise TransportError(f"AI API error {e.status_code}: {e}", status=e.status_code) from e
        except (APIConnectionError, APIError) as e:
            raise TransportError(f"Failed to call AI API: {e}") from e

        if not response.content:
            raise ParseError("AI response contained no content")
        return getattr(response.content[0], "text", "") or ""


def build_backend(ai: AiConfig) -> BaseChatBackend:
    """Select the backend named by ``ai.provider``."""
    api_key = ai.resolved_api_key()
    if ai.provider == "openrouter":
        return OpenRouterBackend(api_key)
    if ai.provider == "anthropic":
        return AnthropicBackend(api_key)
    raise ConfigError(f"Unknown AI provider '{ai.provider}'")
