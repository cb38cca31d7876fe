"""HTTP transport for single JSON-RPC calls against a Whisper node."""

from __future__ import annotations

import itertools
from typing import Any

import httpx
from loguru import logger

from wnodeprobe.rpc.protocol import RpcRequest, RpcResponse
from wnodeprobe.rpc.serialization import (
    decode_response_payload,
    encode_request,
    parse_body,
    to_protocol_error,
)
from wnodeprobe.utils.exceptions import DecodeError, TransportError

_REQUEST_IDS = itertools.count(1)

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class HttpRpcTransport:
    """Posts one JSON-RPC request per connection and decodes one response.

    No retries and no connection reuse: every call opens its own client.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def send(self, method: str, params: list[Any] | dict[str, Any] | None = None) -> RpcResponse:
        """Send one call and return the decoded response, error member included.

        Transport failures raise TransportError and unusable bodies raise
        DecodeError; a JSON-RPC error reply is returned, not raised.
        """
        request = RpcRequest(id=next(_REQUEST_IDS), method=method, params=[] if params is None else params)
        logger.debug("rpc -> {} {} id={}", self.base_url, method, request.id)
        try:
            async with self._client() as client:
                resp = await client.post(self.base_url, content=encode_request(request), headers=JSON_HEADERS)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"rpc timeout: {method} at {self.base_url}",
                code="RPC_TIMEOUT",
                url=self.base_url,
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(
                f"rpc network error: {method} at {self.base_url}: {exc}",
                code="RPC_NETWORK_ERROR",
                url=self.base_url,
            ) from exc

        status_code = int(getattr(resp, "status_code", 0) or 0)
        text = str(getattr(resp, "text", "") or "")
        if status_code >= 400:
            response = self._decode_http_error(text, request=request)
            if response is None:
                raise TransportError(
                    f"rpc http error {status_code}: {method} at {self.base_url}",
                    code="RPC_HTTP_ERROR",
                    url=self.base_url,
                    status_code=status_code,
                )
            return response

        response = decode_response_payload(parse_body(text, method=method), expected_id=request.id, method=method)
        logger.debug("rpc <- {} {} id={} ok={}", self.base_url, method, response.id, response.ok)
        return response

    async def call(self, method: str, params: list[Any] | dict[str, Any] | None = None) -> Any:
        """Send one call and return its result, raising ProtocolError on an error reply."""
        response = await self.send(method, params)
        if not response.ok:
            raise to_protocol_error(response, method=method)
        return response.result

    @staticmethod
    def _decode_http_error(text: str, *, request: RpcRequest) -> RpcResponse | None:
        # Some nodes answer RPC errors with a 4xx/5xx status and a JSON-RPC body.
        try:
            response = decode_response_payload(
                parse_body(text, method=request.method),
                expected_id=request.id,
                method=request.method,
            )
        except DecodeError:
            return None
        return None if response.ok else response
