"""Capability detection for wrapped providers.

Capabilities are read from the provider's own declaration when it makes one.
Undeclared providers are classified through the marker protocols in
``baton_llm.providers.base``; function calling is then settled by a single
trial call with an empty tool list, unless live probing is disabled.
Whatever the route, the result is computed once per probe and never changes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from baton_llm.providers.base import (
    ChatCompletionProvider,
    DeclaresCapabilities,
    ResponsesProvider,
    StreamingProvider,
)
from baton_llm.types import CapabilitySet

logger = logging.getLogger(__name__)

_PROBE_MESSAGES = [{"role": "user", "content": "test"}]

CAPABILITY_INFO: dict[str, dict[str, str]] = {
    "responses_api": {
        "name": "Responses API",
        "description": "Item-based Responses API support",
        "priority": "high",
    },
    "chat_completion": {
        "name": "Chat Completions API",
        "description": "Standard chat completions API support",
        "priority": "high",
    },
    "streaming": {
        "name": "Streaming",
        "description": "Streaming response support",
        "priority": "medium",
    },
    "function_calling": {
        "name": "Function Calling",
        "description": "Tool/function calling support (required for handoffs)",
        "priority": "high",
    },
    "handoffs": {
        "name": "Handoffs",
        "description": "Agent handoff support",
        "priority": "high",
    },
}


@dataclass
class Recommendation:
    level: str
    message: str


@dataclass
class CapabilityReport:
    provider: str
    capabilities: CapabilitySet
    recommendations: list[Recommendation] = field(default_factory=list)
    handoff_support: str = "Limited"
    optimal_usage: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "capabilities": [
                {**CAPABILITY_INFO[key], "supported": supported}
                for key, supported in self.capabilities.to_dict().items()
            ],
            "recommendations": [
                {"level": r.level, "message": r.message} for r in self.recommendations
            ],
            "handoff_support": self.handoff_support,
            "optimal_usage": self.optimal_usage,
        }


def provider_name(provider: Any) -> str:
    return str(getattr(provider, "name", None) or type(provider).__name__)


class CapabilityProbe:
    """Determines, once, what a provider supports."""

    def __init__(
        self,
        provider: Any,
        *,
        live_function_probe: bool = True,
        probe_model: str | None = None,
    ) -> None:
        self._provider = provider
        self._live_function_probe = live_function_probe
        self._probe_model = probe_model
        self._capabilities: CapabilitySet | None = None
        self._lock: asyncio.Lock | None = None
        self._probe_calls = 0

    @property
    def probe_calls(self) -> int:
        """Number of live trial calls issued so far."""
        return self._probe_calls

    @property
    def detected(self) -> CapabilitySet | None:
        return self._capabilities

    async def detect(self) -> CapabilitySet:
        if self._capabilities is not None:
            return self._capabilities
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._capabilities is None:
                self._capabilities = await self._compute()
                logger.debug(
                    "Detected capabilities for %s: %s",
                    provider_name(self._provider),
                    self._capabilities.to_dict(),
                )
        return self._capabilities

    async def _compute(self) -> CapabilitySet:
        provider = self._provider
        if isinstance(provider, DeclaresCapabilities):
            declared = provider.declared_capabilities()
            if declared is not None:
                return declared

        chat = isinstance(provider, ChatCompletionProvider)
        responses = isinstance(provider, ResponsesProvider)
        streaming = isinstance(provider, StreamingProvider)
        function_calling = False
        if (chat or responses) and self._live_function_probe:
            function_calling = await self._probe_function_calling(responses)

        return CapabilitySet(
            responses_api=responses,
            chat_completion=chat,
            streaming=streaming,
            function_calling=function_calling,
        )

    async def _probe_function_calling(self, use_responses: bool) -> bool:
        name = provider_name(self._provider)
        model = self._probe_model
        if model is None:
            models = list(getattr(self._provider, "supported_models", None) or [])
            model = models[0] if models else None
        if model is None:
            logger.debug("No model available to probe function calling on %s", name)
            return False

        self._probe_calls += 1
        try:
            if use_responses:
                await self._provider.responses_completion(
                    input=[{"type": "message", "role": "user",
                            "content": [{"type": "input_text", "text": "test"}]}],
                    model=model,
                    tools=[],
                    stream=False,
                )
            else:
                await self._provider.chat_completion(
                    messages=list(_PROBE_MESSAGES),
                    model=model,
                    tools=[],
                    stream=False,
                )
        except Exception as err:
            if "tools" in str(err).lower():
                logger.debug("%s rejected the tools parameter: %s", name, err)
            else:
                logger.debug(
                    "Function calling probe on %s was inconclusive (%s: %s)",
                    name, type(err).__name__, err,
                )
            return False
        return True

    async def report(self) -> CapabilityReport:
        caps = await self.detect()
        return CapabilityReport(
            provider=provider_name(self._provider),
            capabilities=caps,
            recommendations=_recommendations(caps),
            handoff_support="Full" if caps.handoffs else "Limited",
            optimal_usage=_optimal_usage(caps),
        )


def _recommendations(caps: CapabilitySet) -> list[Recommendation]:
    recs: list[Recommendation] = []
    if not (caps.chat_completion or caps.responses_api):
        recs.append(Recommendation(
            "critical",
            "Provider doesn't support any completion API. Implement chat_completion.",
        ))
    if not caps.function_calling:
        recs.append(Recommendation(
            "warning",
            "Provider doesn't support function calling; handoffs fall back to "
            "content-based detection.",
        ))
    if caps.responses_api:
        recs.append(Recommendation(
            "success", "Provider supports the Responses API. Optimal for handoff workflows."
        ))
    elif caps.chat_completion and caps.function_calling:
        recs.append(Recommendation(
            "success",
            "Provider supports Chat Completions with function calling. "
            "Handoffs will work through the adapter.",
        ))
    if caps.streaming:
        recs.append(Recommendation("info", "Provider supports streaming."))
    return recs


def _optimal_usage(caps: CapabilitySet) -> str:
    if caps.responses_api and caps.function_calling:
        return "Native Responses API"
    if caps.chat_completion and caps.function_calling:
        return "Chat Completions through the adapter with full handoff support"
    if caps.chat_completion:
        return "Chat Completions only with content-based handoff detection"
    return "Not compatible: implement a completion method"
