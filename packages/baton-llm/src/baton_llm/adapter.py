"""ProviderAdapter: one completion and handoff contract over any provider.

The adapter asks the capability probe which wire shape the wrapped provider
speaks, builds the request in that shape, runs the call under the retry
executor and normalizes whatever comes back. Providers without native
function calling get content-based handoff detection instead.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

from baton_llm.capabilities import CapabilityProbe, CapabilityReport, provider_name
from baton_llm.config import AdapterConfig
from baton_llm.errors import APIError, ConfigurationError
from baton_llm.handoff import DetectionStats, HandoffDetection, HandoffDetector, RosterLike
from baton_llm.normalize import FormatNormalizer, canonicalize
from baton_llm.providers.base import StreamingProvider
from baton_llm.retry import RetryExecutor, RetryPolicy, RetryStats
from baton_llm.stream import StreamAccumulator, StreamDecoder, decode_stream
from baton_llm.types import (
    CapabilitySet,
    CompletionRequest,
    NormalizedResponse,
    StreamEvent,
    StreamEventType,
)

logger = logging.getLogger(__name__)


class ProviderAdapter:
    """Wraps a provider and exposes complete/stream/detect_handoff/capabilities."""

    def __init__(
        self,
        provider: Any,
        roster: RosterLike | None = None,
        *,
        config: AdapterConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._provider = provider
        self._config = config or AdapterConfig()
        self._normalizer = FormatNormalizer()
        self._probe = CapabilityProbe(
            provider,
            live_function_probe=self._config.live_function_probe,
            probe_model=self._config.probe_model,
        )
        self._retry = RetryExecutor(retry_policy or self._config.retry, sleep=sleep)
        self._detector = HandoffDetector(
            roster if roster is not None else self._config.roster
        )

    # -- Forwarded provider surface --

    @property
    def provider(self) -> Any:
        return self._provider

    @property
    def name(self) -> str:
        return provider_name(self._provider)

    @property
    def supported_models(self) -> list[str]:
        return list(getattr(self._provider, "supported_models", None) or [])

    async def close(self) -> None:
        close = getattr(self._provider, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    async def __aenter__(self) -> ProviderAdapter:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- Capabilities --

    async def capabilities(self) -> CapabilitySet:
        return await self._probe.detect()

    async def capability_report(self) -> CapabilityReport:
        return await self._probe.report()

    @property
    def retry_stats(self) -> RetryStats:
        return self._retry.stats

    # -- Completion --

    async def complete(self, request: CompletionRequest) -> NormalizedResponse:
        """Run one completion and return it in canonical form."""
        if request.stream:
            accumulator = StreamAccumulator()
            async for event in self.stream(request):
                accumulator.process(event)
            return accumulator.response()
        return await self._complete_once(request)

    async def _complete_once(self, request: CompletionRequest) -> NormalizedResponse:
        caps = await self.capabilities()
        provider = self._provider

        if caps.responses_api:
            body = self._normalizer.responses_request(request, stream=False)

            async def call() -> Any:
                return await provider.responses_completion(**body)

            route = "responses"
        elif caps.chat_completion:
            body = self._normalizer.chat_request(request, stream=False)

            async def call() -> Any:
                return await provider.chat_completion(**body)

            route = "chat"
        else:
            raise ConfigurationError(
                f"Provider {self.name} implements neither responses_completion "
                "nor chat_completion"
            )

        logger.debug("Routing %s request for %s via %s", request.model, self.name, route)
        raw = await self._retry.execute(call, operation=f"{self.name} {route} completion")
        return self._normalize(raw)

    def _normalize(self, raw: Any) -> NormalizedResponse:
        data = canonicalize(raw)
        if not isinstance(data, dict):
            raise APIError(
                f"Provider {self.name} returned {type(raw).__name__}, expected a mapping",
                provider=self.name,
                raw=raw,
            )
        return self._normalizer.normalize(data)

    # -- Streaming --

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Yield typed stream events for a request.

        Only Responses-format SSE is decoded natively. Providers that cannot
        stream, and chat-only providers whose chunks carry no event type, are
        served by a single completion turned into the same event sequence a
        real stream would produce.
        """
        caps = await self.capabilities()
        native = (
            caps.streaming
            and caps.responses_api
            and isinstance(self._provider, StreamingProvider)
        )
        if not native:
            async for event in self._emulate_stream(request):
                yield event
            return

        body = self._normalizer.responses_request(request, stream=True)
        iterator, first = await self._open_stream(body)
        try:
            async def chunks() -> AsyncIterator[bytes]:
                if first is not None:
                    yield first
                async for chunk in iterator:
                    yield chunk

            async for event in decode_stream(chunks(), StreamDecoder(self._normalizer)):
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _open_stream(
        self, body: dict[str, Any]
    ) -> tuple[AsyncIterator[bytes], bytes | None]:
        provider = self._provider

        async def open_once() -> tuple[AsyncIterator[bytes], bytes | None]:
            iterator = provider.stream_completion(body).__aiter__()
            try:
                first = await iterator.__anext__()
            except StopAsyncIteration:
                return iterator, None
            return iterator, first

        # Only establishing the stream is retried; once bytes flow, errors propagate.
        return await self._retry.execute(open_once, operation=f"{self.name} stream")

    async def _emulate_stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        response = await self._complete_once(request)
        yield StreamEvent(
            type=StreamEventType.CREATED,
            response={"id": response.id, "model": response.model, "status": "in_progress"},
        )
        for index, item in enumerate(response.output):
            item_dict = item.to_dict()
            yield StreamEvent(
                type=StreamEventType.OUTPUT_ITEM_ADDED,
                item=item_dict,
                output_item=item,
                output_index=index,
            )
            yield StreamEvent(
                type=StreamEventType.OUTPUT_ITEM_DONE,
                item=item_dict,
                output_item=item,
                output_index=index,
            )
        yield StreamEvent(
            type=StreamEventType.COMPLETED,
            response=self._normalizer.to_responses(response),
            final_response=response,
        )

    # -- Handoffs --

    def detect_handoff(
        self, text: str, roster: RosterLike | None = None
    ) -> HandoffDetection:
        return self._detector.detect(text, roster)

    async def detect_content_based_handoff(self, content: str) -> str | None:
        """Scan content for a handoff only when native tool calls are unavailable."""
        caps = await self.capabilities()
        if caps.function_calling:
            return None
        return self._detector.detect_handoff_in_content(content)

    async def enhanced_instructions(
        self, base_instructions: str, roster: RosterLike | None = None
    ) -> str:
        caps = await self.capabilities()
        if caps.function_calling:
            return base_instructions
        handoff = self._detector.generate_handoff_instructions(roster)
        return f"{base_instructions}\n\n{handoff}" if base_instructions else handoff

    def update_roster(self, names: Iterable[str] | RosterLike) -> None:
        self._detector.update_roster(names)

    def handoff_stats(self) -> DetectionStats:
        return self._detector.stats()

    def reset_handoff_stats(self) -> None:
        self._detector.reset_stats()

