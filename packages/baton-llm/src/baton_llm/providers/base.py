"""Provider contracts.

A provider advertises what it can do in one of two explicit ways:

* ``declared_capabilities()`` returning a ``CapabilitySet``; or
* implementing the per-capability marker protocols below
  (``ChatCompletionProvider``, ``ResponsesProvider``, ``StreamingProvider``).

Nothing inspects call signatures; a provider that implements a protocol
method is taken at its word.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, runtime_checkable

from baton_llm.errors import InvalidArgumentError
from baton_llm.types import CapabilitySet


@runtime_checkable
class ChatCompletionProvider(Protocol):
    """Speaks the Chat Completions shape and returns the raw reply dict."""

    async def chat_completion(
        self,
        *,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
        **params: Any,
    ) -> dict[str, Any]:
        ...


@runtime_checkable
class ResponsesProvider(Protocol):
    """Speaks the Responses shape and returns the raw reply dict."""

    async def responses_completion(
        self,
        *,
        input: list[dict[str, Any]],
        model: str,
        instructions: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
        previous_response_id: str | None = None,
        **params: Any,
    ) -> dict[str, Any]:
        ...


@runtime_checkable
class StreamingProvider(Protocol):
    """Yields raw SSE bytes for a request body in the provider's native shape."""

    def stream_completion(self, body: dict[str, Any]) -> AsyncIterator[bytes]:
        ...


@runtime_checkable
class DeclaresCapabilities(Protocol):
    def declared_capabilities(self) -> CapabilitySet | None:
        ...


class BaseProvider:
    """Convenience base for concrete providers."""

    provider_name: str = "provider"

    def __init__(self, supported_models: list[str] | None = None) -> None:
        self._supported_models = list(supported_models or [])

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def supported_models(self) -> list[str]:
        return list(self._supported_models)

    def declared_capabilities(self) -> CapabilitySet | None:
        """Static capabilities, or None to have them probed."""
        return None

    def validate_model(self, model: str) -> None:
        if self._supported_models and model not in self._supported_models:
            raise InvalidArgumentError(
                f"Model '{model}' not supported by {self.name}"
            )

    async def close(self) -> None:
        """Release resources (HTTP connections, etc.)."""
