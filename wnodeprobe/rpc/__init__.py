"""JSON-RPC frames, codec and HTTP transport."""

from .protocol import JSONRPC_VERSION, RpcError, RpcRequest, RpcResponse
from .serialization import (
    decode_response_payload,
    encode_request,
    normalize_rpc_error,
    parse_body,
    safe_dict,
    to_protocol_error,
)
from .transport import HttpRpcTransport

__all__ = [
    "JSONRPC_VERSION",
    "HttpRpcTransport",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    "decode_response_payload",
    "encode_request",
    "normalize_rpc_error",
    "parse_body",
    "safe_dict",
    "to_protocol_error",
]
