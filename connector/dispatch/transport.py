"""
HTTP transport for the dispatch queue.
"""

from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from shared.errors import RemoteError
from shared.logging import get_logger
from ..models import TransportResponse


class Transport(Protocol):
    """Sends one request; raises on transport failure, returns any HTTP status."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> TransportResponse: ...

    def stream(self, method: str, url: str, headers: Dict[str, str]) -> AsyncIterator[bytes]: ...

    async def close(self) -> None: ...


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``."""

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.logger = get_logger("connector.transport")
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> TransportResponse:
        """Perform the request and decode its JSON body."""
        response = await self.client.request(
            method,
            url,
            headers=headers,
            json=body,
            params=_encode_params(params)
        )

        return TransportResponse(
            status_code=response.status_code,
            body=_decode_body(response),
            reason=response.reason_phrase
        )

    async def stream(self, method: str, url: str, headers: Dict[str, str]) -> AsyncIterator[bytes]:
        """Yield the response body in chunks; a non-2xx status raises ``RemoteError``."""
        async with self.client.stream(method, url, headers=headers) as response:
            if not response.is_success:
                await response.aread()
                self.logger.warning("Stream request failed", url=url, status_code=response.status_code)
                raise RemoteError.from_response(
                    response.status_code, _decode_body(response), response.reason_phrase
                )
            async for chunk in response.aiter_bytes():
                yield chunk

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self.logger.debug("HTTP transport closed")
        self._client = None


def _encode_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop unset params and render booleans the way the API expects them."""
    if not params:
        return None

    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        encoded[key] = value
    return encoded


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
