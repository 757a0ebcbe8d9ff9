"""httpx transport shared by the reference providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from baton_llm.errors import (
    NetworkError,
    RequestTimeoutError,
    StreamError,
    error_from_status,
)

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    status: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)


class HttpTransport:
    """Posts JSON bodies and classifies failures into the error taxonomy."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        provider: str = "http",
        headers: dict[str, str] | None = None,
        timeout: float = 300.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._provider = provider
        all_headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            all_headers["Authorization"] = f"Bearer {api_key}"
        all_headers.update(headers or {})
        self._client = http_client or httpx.AsyncClient(
            headers=all_headers, timeout=httpx.Timeout(timeout)
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def send(self, path: str, body: dict[str, Any]) -> TransportResponse:
        """POST ``body`` and return the decoded reply; raises on HTTP >= 400."""
        url = f"{self._base_url}{path}"
        try:
            http_resp = await self._client.post(url, json=body)
        except httpx.TimeoutException as err:
            raise RequestTimeoutError(f"Request to {url} timed out", cause=err) from err
        except httpx.TransportError as err:
            raise NetworkError(f"Connection to {url} failed: {err}", cause=err) from err

        if http_resp.status_code >= 400:
            self._raise_error(http_resp)

        try:
            payload = http_resp.json()
        except ValueError:
            payload = {"text": http_resp.text}
        logger.debug("POST %s -> %d", url, http_resp.status_code)
        return TransportResponse(
            status=http_resp.status_code,
            body=payload,
            headers=dict(http_resp.headers),
        )

    async def send_streaming(
        self, path: str, body: dict[str, Any]
    ) -> AsyncIterator[bytes]:
        """POST ``body`` and yield the raw response bytes as they arrive.

        A transport failure after the first chunk raises ``StreamError``; the
        partial stream cannot be replayed.
        """
        url = f"{self._base_url}{path}"
        started = False
        try:
            async with self._client.stream(
                "POST", url, json=body, headers={"Accept": "text/event-stream"}
            ) as http_resp:
                if http_resp.status_code >= 400:
                    await http_resp.aread()
                    self._raise_error(http_resp)
                async for chunk in http_resp.aiter_bytes():
                    started = True
                    yield chunk
        except httpx.TransportError as err:
            if started:
                raise StreamError(f"Stream from {url} broke off: {err}", cause=err) from err
            if isinstance(err, httpx.TimeoutException):
                raise RequestTimeoutError(f"Stream from {url} timed out", cause=err) from err
            raise NetworkError(f"Stream from {url} failed: {err}", cause=err) from err

    async def close(self) -> None:
        await self._client.aclose()

    def _raise_error(self, http_resp: httpx.Response) -> None:
        try:
            body = http_resp.json()
        except ValueError:
            body = {"error": {"message": http_resp.text}}
        raise error_from_status(
            http_resp.status_code,
            body,
            provider=self._provider,
            headers=http_resp.headers,
            fallback_text=http_resp.text,
        )
