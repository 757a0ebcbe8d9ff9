"""Provider adaptation and handoff fallback for LLM backends."""

import logging

from baton_llm.types import (
    CapabilitySet,
    CompletionRequest,
    FunctionCallItem,
    Message,
    MessageItem,
    NormalizedResponse,
    OutputItem,
    Role,
    StreamEvent,
    StreamEventType,
    ToolChoice,
    ToolDefinition,
    Usage,
)
from baton_llm.errors import (
    SDKError,
    ProviderError,
    AuthenticationError,
    AccessDeniedError,
    NotFoundError,
    InvalidRequestError,
    ContextLengthError,
    RateLimitError,
    ServerError,
    APIError,
    RequestTimeoutError,
    NetworkError,
    StreamError,
    AbortError,
    ConfigurationError,
    InvalidArgumentError,
)
from baton_llm.retry import RetryExecutor, RetryPolicy, RetryStats, retry
from baton_llm.normalize import FormatNormalizer, canonicalize
from baton_llm.stream import StreamAccumulator, StreamDecoder, decode_all, decode_stream
from baton_llm.capabilities import CapabilityProbe, CapabilityReport
from baton_llm.handoff import (
    DEFAULT_PATTERNS,
    DetectionPattern,
    DetectionStats,
    HandoffDetection,
    HandoffDetector,
)
from baton_llm.config import AdapterConfig, provider_from_env
from baton_llm.adapter import ProviderAdapter

logging.getLogger(__name__).addHandler(logging.NullHandler())
