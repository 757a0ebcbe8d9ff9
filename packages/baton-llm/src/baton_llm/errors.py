"""Error hierarchy for the provider adaptation layer."""

from __future__ import annotations

from typing import Any, Mapping


class SDKError(Exception):
    """Base error for all library errors."""

    def __init__(
        self,
        message: str,
        *,
        cause: Exception | None = None,
        attempts: int | None = None,
    ):
        super().__init__(message)
        self.cause = cause
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return False


class ProviderError(SDKError):
    """Error returned by an LLM provider."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        error_code: str | None = None,
        retryable: bool = True,
        retry_after: float | None = None,
        raw: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code
        self._retryable = retryable
        self.retry_after = retry_after
        self.raw = raw

    @property
    def retryable(self) -> bool:
        return self._retryable


# Non-retryable provider errors

class AuthenticationError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, provider=provider, retryable=False, **kwargs)


class AccessDeniedError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 403)
        super().__init__(message, provider=provider, retryable=False, **kwargs)


class NotFoundError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 404)
        super().__init__(message, provider=provider, retryable=False, **kwargs)


class InvalidRequestError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 400)
        super().__init__(message, provider=provider, retryable=False, **kwargs)


class ContextLengthError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 413)
        super().__init__(message, provider=provider, retryable=False, **kwargs)


class APIError(ProviderError):
    """Generic provider failure. Not retried unless its status is whitelisted."""

    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        super().__init__(message, provider=provider, retryable=False, **kwargs)


# Retryable provider errors

class RateLimitError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, provider=provider, retryable=True, **kwargs)


class ServerError(ProviderError):
    def __init__(self, message: str, *, provider: str, **kwargs: Any):
        super().__init__(message, provider=provider, retryable=True, **kwargs)


# Non-provider errors

class RequestTimeoutError(SDKError):
    @property
    def retryable(self) -> bool:
        return True


class NetworkError(SDKError):
    @property
    def retryable(self) -> bool:
        return True


class StreamError(SDKError):
    @property
    def retryable(self) -> bool:
        return True


class AbortError(SDKError):
    pass


class ConfigurationError(SDKError):
    pass


class InvalidArgumentError(SDKError):
    """Raised immediately for malformed requests (bad model, bad tool shape)."""


_STATUS_MAP: dict[int, type[ProviderError]] = {
    400: InvalidRequestError,
    401: AuthenticationError,
    403: AccessDeniedError,
    404: NotFoundError,
    413: ContextLengthError,
    422: InvalidRequestError,
    429: RateLimitError,
}


def classify_error_message(message: str) -> str | None:
    """Classify an error message for ambiguous HTTP status codes."""
    msg = message.lower()
    if "not found" in msg or "does not exist" in msg:
        return "not_found"
    if "unauthorized" in msg or "invalid key" in msg:
        return "authentication"
    if "context length" in msg or "too many tokens" in msg:
        return "context_length"
    if "rate limit" in msg or "too many requests" in msg:
        return "rate_limit"
    return None


def error_from_status(
    status: int,
    body: Any,
    *,
    provider: str,
    headers: Mapping[str, str] | None = None,
    fallback_text: str = "",
) -> ProviderError:
    """Build the typed error for a failed HTTP exchange.

    This is the single place where transport failures are mapped onto the
    taxonomy; everything downstream only looks at the exception type.
    """
    error_obj: dict[str, Any] = {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error_obj = body["error"]
    elif isinstance(body, dict) and isinstance(body.get("error"), str):
        error_obj = {"message": body["error"]}

    message = error_obj.get("message") or fallback_text or f"HTTP {status}"
    error_code = error_obj.get("code") or error_obj.get("type")

    retry_after = None
    ra_header = (headers or {}).get("retry-after")
    if ra_header:
        try:
            retry_after = float(ra_header)
        except ValueError:
            retry_after = None

    if status >= 500:
        err_cls: type[ProviderError] = ServerError
    else:
        err_cls = _STATUS_MAP.get(status, APIError)

    # Refine with message classification
    if status in (400, 422):
        classification = classify_error_message(message)
        if classification == "context_length":
            err_cls = ContextLengthError
        elif classification == "rate_limit":
            err_cls = RateLimitError
        elif classification == "not_found":
            err_cls = NotFoundError
        elif classification == "authentication":
            err_cls = AuthenticationError

    return err_cls(
        message,
        provider=provider,
        status_code=status,
        error_code=error_code,
        raw=body if isinstance(body, dict) else None,
        retry_after=retry_after,
    )
