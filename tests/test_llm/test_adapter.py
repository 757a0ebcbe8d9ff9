"""Tests for baton_llm.adapter."""

import json

import pytest
from unittest.mock import AsyncMock

from baton_llm.adapter import ProviderAdapter
from baton_llm.config import AdapterConfig
from baton_llm.errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    ServerError,
)
from baton_llm.providers.base import BaseProvider
from baton_llm.retry import RetryPolicy
from baton_llm.types import (
    CapabilitySet,
    CompletionRequest,
    FunctionCallItem,
    Message,
    MessageItem,
    StreamEventType,
    ToolDefinition,
)

CHAT_REPLY = {
    "id": "chatcmpl-1",
    "model": "llama-3",
    "choices": [{
        "index": 0,
        "message": {
            "role": "assistant",
            "content": "Let me check.",
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": "lookup", "arguments": '{"q":"x"}'},
            }],
        },
        "finish_reason": "tool_calls",
    }],
    "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7},
}

RESPONSES_REPLY = {
    "id": "resp_1",
    "model": "gpt-4o",
    "status": "completed",
    "output": [{
        "type": "message",
        "role": "assistant",
        "content": [{"type": "output_text", "text": "Hi there"}],
    }],
    "usage": {"input_tokens": 2, "output_tokens": 3},
}


def _sse(payload: dict) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


class FakeChat(BaseProvider):
    provider_name = "fake-chat"

    def __init__(self, replies=None, function_calling=True):
        super().__init__(["llama-3"])
        self.chat_completion = AsyncMock(side_effect=replies or [CHAT_REPLY])
        self._function_calling = function_calling
        self.closed = False

    def declared_capabilities(self):
        return CapabilitySet(chat_completion=True, function_calling=self._function_calling)

    async def close(self):
        self.closed = True


class FakeResponses(BaseProvider):
    provider_name = "fake-responses"

    def __init__(self, chunks=None, open_errors=()):
        super().__init__(["gpt-4o"])
        self.responses_completion = AsyncMock(return_value=RESPONSES_REPLY)
        self.chunks = chunks or []
        self.open_errors = list(open_errors)
        self.stream_bodies = []

    def declared_capabilities(self):
        return CapabilitySet(responses_api=True, streaming=True, function_calling=True)

    async def stream_completion(self, body):
        self.stream_bodies.append(body)
        if self.open_errors:
            raise self.open_errors.pop(0)
        for chunk in self.chunks:
            yield chunk


class NoApi(BaseProvider):
    provider_name = "no-api"


class NoSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _request(**kwargs) -> CompletionRequest:
    kwargs.setdefault("model", "llama-3")
    kwargs.setdefault("messages", [Message.system("Be brief."), Message.user("Hi")])
    return CompletionRequest(**kwargs)


@pytest.mark.asyncio
class TestComplete:
    async def test_chat_path(self):
        provider = FakeChat()
        adapter = ProviderAdapter(provider)
        resp = await adapter.complete(_request(tools=[ToolDefinition(name="lookup")]))

        assert resp.output == [
            MessageItem(content="Let me check."),
            FunctionCallItem(id="call_1", name="lookup", arguments='{"q":"x"}'),
        ]
        kwargs = provider.chat_completion.call_args.kwargs
        assert kwargs["model"] == "llama-3"
        assert kwargs["stream"] is False
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert kwargs["tools"][0]["function"]["name"] == "lookup"

    async def test_responses_path_preferred(self):
        provider = FakeResponses()
        adapter = ProviderAdapter(provider)
        resp = await adapter.complete(_request(model="gpt-4o", params={"temperature": 0}))

        assert resp.text == "Hi there"
        kwargs = provider.responses_completion.call_args.kwargs
        assert kwargs["instructions"] == "Be brief."
        assert kwargs["input"] == [
            {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "Hi"}]},
        ]
        assert kwargs["temperature"] == 0

    async def test_no_completion_api(self):
        with pytest.raises(ConfigurationError):
            await ProviderAdapter(NoApi()).complete(_request())

    async def test_retries_transient_failures(self):
        sleep = NoSleep()
        provider = FakeChat(replies=[ServerError("boom", provider="p"), CHAT_REPLY])
        adapter = ProviderAdapter(provider, retry_policy=RetryPolicy(jitter=0), sleep=sleep)
        resp = await adapter.complete(_request())
        assert resp.text == "Let me check."
        assert provider.chat_completion.call_count == 2
        assert sleep.delays == [1.0]
        assert adapter.retry_stats.successful_retries == 1

    async def test_fatal_errors_not_retried(self):
        provider = FakeChat(replies=[AuthenticationError("bad key", provider="p")])
        adapter = ProviderAdapter(provider, sleep=NoSleep())
        with pytest.raises(AuthenticationError):
            await adapter.complete(_request())
        assert provider.chat_completion.call_count == 1

    async def test_exhaustion_reports_attempts(self):
        errors = [NetworkError("down") for _ in range(3)]
        provider = FakeChat(replies=errors)
        config = AdapterConfig(retry=RetryPolicy(max_attempts=3, jitter=0))
        adapter = ProviderAdapter(provider, config=config, sleep=NoSleep())
        with pytest.raises(NetworkError) as exc_info:
            await adapter.complete(_request())
        assert exc_info.value is errors[-1]
        assert exc_info.value.attempts == 3

    async def test_non_mapping_reply(self):
        provider = FakeChat(replies=["not a dict"])
        with pytest.raises(APIError):
            await ProviderAdapter(provider).complete(_request())

    async def test_stream_request_accumulated(self):
        provider = FakeResponses(chunks=[
            _sse({"type": "response.created", "response": {"id": "resp_1", "model": "gpt-4o"}}),
            _sse({"type": "response.completed", "response": RESPONSES_REPLY}),
            b"data: [DONE]\n\n",
        ])
        adapter = ProviderAdapter(provider)
        resp = await adapter.complete(_request(model="gpt-4o", stream=True))
        assert resp.text == "Hi there"
        assert provider.stream_bodies[0]["stream"] is True
        provider.responses_completion.assert_not_called()


@pytest.mark.asyncio
class TestStream:
    async def test_decodes_native_stream(self):
        chunks = b"".join([
            _sse({"type": "response.created", "response": {"id": "resp_1"}}),
            _sse({"type": "response.output_item.done", "output_index": 0,
                  "item": RESPONSES_REPLY["output"][0]}),
            _sse({"type": "response.completed", "response": RESPONSES_REPLY}),
            b"data: [DONE]\n\n",
        ])
        # Split mid-line to make sure buffering happens across chunks
        provider = FakeResponses(chunks=[chunks[:30], chunks[30:90], chunks[90:]])
        adapter = ProviderAdapter(provider)
        events = [e async for e in adapter.stream(_request(model="gpt-4o"))]
        assert [e.type for e in events] == [
            StreamEventType.CREATED,
            StreamEventType.OUTPUT_ITEM_DONE,
            StreamEventType.COMPLETED,
        ]
        assert events[-1].final_response.text == "Hi there"
        assert provider.stream_bodies[0]["instructions"] == "Be brief."

    async def test_opening_stream_is_retried(self):
        sleep = NoSleep()
        provider = FakeResponses(
            chunks=[_sse({"type": "response.completed", "response": RESPONSES_REPLY})],
            open_errors=[ServerError("busy", provider="p")],
        )
        adapter = ProviderAdapter(provider, retry_policy=RetryPolicy(jitter=0), sleep=sleep)
        events = [e async for e in adapter.stream(_request(model="gpt-4o"))]
        assert [e.type for e in events] == [StreamEventType.COMPLETED]
        assert len(provider.stream_bodies) == 2
        assert sleep.delays == [1.0]

    async def test_empty_stream(self):
        adapter = ProviderAdapter(FakeResponses(chunks=[]))
        events = [e async for e in adapter.stream(_request(model="gpt-4o"))]
        assert events == []

    async def test_chat_only_streaming_provider_is_emulated(self):
        class StreamingChat(BaseProvider):
            provider_name = "streaming-chat"

            def __init__(self):
                super().__init__(["llama-3"])
                self.chat_completion = AsyncMock(return_value={
                    "id": "chatcmpl-2",
                    "model": "llama-3",
                    "choices": [{"message": {"role": "assistant", "content": "hello"}}],
                })
                self.stream_calls = 0

            async def stream_completion(self, body):
                self.stream_calls += 1
                yield _sse({
                    "object": "chat.completion.chunk",
                    "choices": [{"delta": {"content": "hello"}}],
                })

        provider = StreamingChat()
        adapter = ProviderAdapter(provider)
        caps = await adapter.capabilities()
        assert caps.streaming is True
        assert caps.responses_api is False

        resp = await adapter.complete(_request(stream=True))
        assert resp.text == "hello"
        assert provider.stream_calls == 0
        # One call for the function calling check, one for the completion
        assert provider.chat_completion.call_count == 2
        assert provider.chat_completion.call_args.kwargs["stream"] is False

    async def test_emulated_for_non_streaming_provider(self):
        adapter = ProviderAdapter(FakeChat())
        events = [e async for e in adapter.stream(_request())]
        assert [e.type for e in events] == [
            StreamEventType.CREATED,
            StreamEventType.OUTPUT_ITEM_ADDED,
            StreamEventType.OUTPUT_ITEM_DONE,
            StreamEventType.OUTPUT_ITEM_ADDED,
            StreamEventType.OUTPUT_ITEM_DONE,
            StreamEventType.COMPLETED,
        ]
        assert events[0].response["id"] == "chatcmpl-1"
        assert [e.output_index for e in events[1:5]] == [0, 0, 1, 1]
        assert isinstance(events[3].output_item, FunctionCallItem)
        final = events[-1]
        assert final.final_response.function_calls[0].name == "lookup"
        assert final.response["output"][1]["call_id"] == "call_1"


@pytest.mark.asyncio
class TestCapabilities:
    async def test_memoized(self):
        provider = FakeChat()
        adapter = ProviderAdapter(provider)
        first = await adapter.capabilities()
        second = await adapter.capabilities()
        assert first is second

    async def test_live_probe_runs_once(self):
        class Undeclared(BaseProvider):
            provider_name = "undeclared"

            def __init__(self):
                super().__init__(["m"])
                self.chat_completion = AsyncMock(return_value=CHAT_REPLY)

        provider = Undeclared()
        adapter = ProviderAdapter(provider)
        # AsyncMock attributes set on the instance satisfy the marker protocol
        caps = await adapter.capabilities()
        await adapter.capabilities()
        assert caps.chat_completion is True
        assert caps.function_calling is True
        assert provider.chat_completion.call_count == 1

    async def test_capability_report(self):
        report = await ProviderAdapter(FakeChat(function_calling=False)).capability_report()
        assert report.provider == "fake-chat"
        assert report.handoff_support == "Limited"


class TestHandoffs:
    def test_detect_handoff(self):
        adapter = ProviderAdapter(FakeChat(), ["Support", "Billing"])
        detection = adapter.detect_handoff('I can help. {"handoff_to": "Support"}')
        assert detection.target == "Support"
        assert detection.confidence >= 0.8
        assert detection.method == "content_based"

    def test_detect_with_explicit_roster(self):
        adapter = ProviderAdapter(FakeChat())
        assert adapter.detect_handoff("[HANDOFF:Legal]", ["Legal"]).target == "Legal"

    def test_roster_from_config(self):
        adapter = ProviderAdapter(FakeChat(), config=AdapterConfig(roster=("Research",)))
        assert adapter.detect_handoff("switching to Research").target == "Research"

    def test_update_roster_and_stats(self):
        adapter = ProviderAdapter(FakeChat(), ["Support"])
        adapter.update_roster(["Billing"])
        adapter.detect_handoff("Transfer to Billing")
        adapter.detect_handoff("Transfer to Support")
        stats = adapter.handoff_stats()
        assert stats.attempts == 2
        assert stats.successes == 1
        adapter.reset_handoff_stats()
        assert adapter.handoff_stats().attempts == 0


@pytest.mark.asyncio
class TestContentBasedFallback:
    async def test_skipped_with_native_function_calling(self):
        adapter = ProviderAdapter(FakeChat(function_calling=True), ["Support"])
        assert await adapter.detect_content_based_handoff("[HANDOFF:Support]") is None
        assert adapter.handoff_stats().attempts == 0

    async def test_used_without_function_calling(self):
        adapter = ProviderAdapter(FakeChat(function_calling=False), ["Support"])
        assert await adapter.detect_content_based_handoff("[HANDOFF:Support]") == "Support"

    async def test_enhanced_instructions(self):
        native = ProviderAdapter(FakeChat(function_calling=True), ["Support"])
        assert await native.enhanced_instructions("Be nice.") == "Be nice."

        fallback = ProviderAdapter(FakeChat(function_calling=False), ["Support"])
        text = await fallback.enhanced_instructions("Be nice.")
        assert text.startswith("Be nice.\n\n")
        assert "- Support" in text


@pytest.mark.asyncio
class TestForwarding:
    async def test_name_and_models(self):
        adapter = ProviderAdapter(FakeChat())
        assert adapter.name == "fake-chat"
        assert adapter.supported_models == ["llama-3"]

    async def test_close(self):
        provider = FakeChat()
        async with ProviderAdapter(provider):
            pass
        assert provider.closed is True

    async def test_close_sync_provider(self):
        class SyncClose:
            closed = 0

            def close(self):
                self.closed += 1

        provider = SyncClose()
        await ProviderAdapter(provider).close()
        assert provider.closed == 1

    async def test_no_dynamic_forwarding(self):
        provider = FakeChat()
        provider.extra_method = lambda: "x"
        with pytest.raises(AttributeError):
            ProviderAdapter(provider).extra_method
