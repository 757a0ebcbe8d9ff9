"""OpenAI-compatible provider using the Chat Completions API.

For third-party services (vLLM, Ollama, Together AI, Groq, etc.)
that implement the OpenAI Chat Completions protocol.
"""

from __future__ import annotations

from typing import Any

from baton_llm.providers.base import BaseProvider
from baton_llm.transport import HttpTransport
from baton_llm.types import CapabilitySet


class ChatCompletionsProvider(BaseProvider):
    """Raw Chat Completions client: returns the provider's reply dict unchanged."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        provider_name: str = "openai-compatible",
        supported_models: list[str] | None = None,
        path: str = "/v1/chat/completions",
        supports_tools: bool | None = None,
    ):
        super().__init__(supported_models)
        self._transport = transport
        self.provider_name = provider_name
        self._path = path
        self._supports_tools = supports_tools

    def declared_capabilities(self) -> CapabilitySet | None:
        # Unknown tool support is left to the probe
        if self._supports_tools is None:
            return None
        return CapabilitySet(
            responses_api=False,
            chat_completion=True,
            streaming=False,
            function_calling=self._supports_tools,
        )

    async def chat_completion(
        self,
        *,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
        **params: Any,
    ) -> dict[str, Any]:
        self.validate_model(model)
        body: dict[str, Any] = {"model": model, "messages": messages}
        if tools is not None:
            body["tools"] = tools
        if stream:
            body["stream"] = True
        body.update(params)
        resp = await self._transport.send(self._path, body)
        return resp.body

    async def close(self) -> None:
        await self._transport.close()
