"""Serialization helpers for JSON-RPC frames."""

from __future__ import annotations

import json
from typing import Any

from wnodeprobe.rpc.protocol import RpcError, RpcRequest, RpcResponse
from wnodeprobe.utils.exceptions import DecodeError, ProtocolError

# JSON-RPC "server error" range; used when a node sends an error without a usable code.
DEFAULT_ERROR_CODE = -32000


def safe_dict(value: Any) -> dict[str, Any]:
    """Return the value when dict-like, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def encode_request(request: RpcRequest) -> bytes:
    """Encode a request frame as a UTF-8 JSON body."""
    payload = {
        "jsonrpc": request.jsonrpc,
        "method": request.method,
        "params": request.params,
        "id": request.id,
    }
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def normalize_rpc_error(error: Any) -> RpcError:
    """Normalize unknown error payloads into RpcError."""
    if isinstance(error, str):
        return RpcError(code=DEFAULT_ERROR_CODE, message=error or "rpc failed")
    row = safe_dict(error)
    code = row.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        code = DEFAULT_ERROR_CODE
    return RpcError(
        code=code,
        message=str(row.get("message") or "rpc failed"),
        data=row.get("data"),
    )


def parse_body(text: str, *, method: str | None = None) -> Any:
    """Parse a raw response body, mapping malformed JSON to DecodeError."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"malformed JSON in response: {exc.msg}", method=method, body=text) from exc


def decode_response_payload(
    payload: Any,
    *,
    expected_id: int | str | None = None,
    method: str | None = None,
) -> RpcResponse:
    """Decode a parsed JSON value into an RpcResponse.

    Raises DecodeError when the value is not a JSON-RPC response object or when
    its id does not correlate with ``expected_id``. An error response whose id
    is null is accepted, since servers use null ids for requests they could not
    parse.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"response is not a JSON object: {type(payload).__name__}", method=method)
    has_error = payload.get("error") is not None
    if "result" not in payload and not has_error:
        raise DecodeError("response has neither result nor error", method=method)
    resp_id = payload.get("id")
    if expected_id is not None and resp_id != expected_id and not (has_error and resp_id is None):
        raise DecodeError(f"response id {resp_id!r} does not match request id {expected_id!r}", method=method)
    version = str(payload.get("jsonrpc") or "")
    if has_error:
        return RpcResponse(id=resp_id, error=normalize_rpc_error(payload.get("error")), jsonrpc=version)
    return RpcResponse(id=resp_id, result=payload.get("result"), jsonrpc=version)


def to_protocol_error(response: RpcResponse, *, method: str) -> ProtocolError:
    """Convert an error response to ProtocolError."""
    err = response.error or RpcError(code=DEFAULT_ERROR_CODE, message=f"{method} failed")
    return ProtocolError(err.code, err.message, method=method, data=err.data)
