"""OpenAI provider using the Responses API."""

from __future__ import annotations

from typing import Any, AsyncIterator

from baton_llm.providers.base import BaseProvider
from baton_llm.transport import HttpTransport
from baton_llm.types import CapabilitySet


class ResponsesAPIProvider(BaseProvider):
    """Raw client for /v1/responses, including its SSE stream."""

    provider_name = "openai"

    def __init__(
        self,
        transport: HttpTransport,
        *,
        supported_models: list[str] | None = None,
        path: str = "/v1/responses",
    ):
        super().__init__(supported_models)
        self._transport = transport
        self._path = path

    def declared_capabilities(self) -> CapabilitySet:
        return CapabilitySet(
            responses_api=True,
            chat_completion=False,
            streaming=True,
            function_calling=True,
        )

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
        self.validate_model(model)
        body = self._build_body(
            input=input,
            model=model,
            instructions=instructions,
            tools=tools,
            previous_response_id=previous_response_id,
            **params,
        )
        if stream:
            body["stream"] = True
        resp = await self._transport.send(self._path, body)
        return resp.body

    async def stream_completion(self, body: dict[str, Any]) -> AsyncIterator[bytes]:
        self.validate_model(body.get("model", ""))
        async for chunk in self._transport.send_streaming(
            self._path, {**body, "stream": True}
        ):
            yield chunk

    async def close(self) -> None:
        await self._transport.close()

    def _build_body(
        self,
        *,
        input: list[dict[str, Any]],
        model: str,
        instructions: str | None,
        tools: list[dict[str, Any]] | None,
        previous_response_id: str | None,
        **params: Any,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model, "input": input}
        if instructions:
            body["instructions"] = instructions
        if tools is not None:
            body["tools"] = tools
            if any(t.get("type") == "web_search" for t in tools):
                body.setdefault("include", []).append("web_search_call.results")
        if previous_response_id:
            body["previous_response_id"] = previous_response_id
        body.update(params)
        return body
