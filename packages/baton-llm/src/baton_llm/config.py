"""Environment-driven configuration for adapters and reference providers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from baton_llm.errors import ConfigurationError
from baton_llm.providers.base import BaseProvider
from baton_llm.retry import RetryPolicy

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.environ.get(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class AdapterConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    live_function_probe: bool = True
    probe_model: str | None = None
    roster: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> AdapterConfig:
        """Build a config from ``BATON_*`` environment variables."""
        defaults = RetryPolicy()
        try:
            retry = RetryPolicy(
                max_attempts=_env_int("BATON_MAX_ATTEMPTS", defaults.max_attempts),
                base_delay=_env_float("BATON_BASE_DELAY", defaults.base_delay),
                max_delay=_env_float("BATON_MAX_DELAY", defaults.max_delay),
                multiplier=_env_float("BATON_BACKOFF_MULTIPLIER", defaults.multiplier),
                jitter=_env_float("BATON_JITTER", defaults.jitter),
            )
        except ValueError as err:
            raise ConfigurationError(f"Invalid retry configuration: {err}", cause=err) from err

        return cls(
            retry=retry,
            live_function_probe=_env_bool("BATON_LIVE_FUNCTION_PROBE", True),
            probe_model=os.environ.get("BATON_PROBE_MODEL") or None,
            roster=_env_list("BATON_AGENTS"),
        )


def provider_from_env() -> BaseProvider:
    """Build a reference provider from environment variables.

    ``OPENAI_API_KEY`` selects the Responses API provider. Otherwise
    ``BATON_CHAT_BASE_URL`` selects a Chat Completions provider for any
    OpenAI-compatible server.
    """
    from baton_llm.transport import HttpTransport

    openai_key = os.environ.get("OPENAI_API_KEY")
    if openai_key:
        from baton_llm.providers.openai import ResponsesAPIProvider
        base_url = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com")
        transport = HttpTransport(base_url, openai_key, provider="openai")
        return ResponsesAPIProvider(transport)

    chat_url = os.environ.get("BATON_CHAT_BASE_URL")
    if chat_url:
        from baton_llm.providers.openai_compat import ChatCompletionsProvider
        transport = HttpTransport(
            chat_url,
            os.environ.get("BATON_CHAT_API_KEY"),
            provider="openai-compatible",
        )
        return ChatCompletionsProvider(transport)

    raise ConfigurationError(
        "No provider configured. Set OPENAI_API_KEY or BATON_CHAT_BASE_URL."
    )
