"""JSON-RPC 2.0 frame models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True, slots=True)
class RpcError:
    """Error member of a JSON-RPC response."""

    code: int
    message: str
    data: Any = None


@dataclass(frozen=True, slots=True)
class RpcRequest:
    """Single outbound call; params is a JSON array or object."""

    id: int
    method: str
    params: list[Any] | dict[str, Any]
    jsonrpc: str = JSONRPC_VERSION


@dataclass(frozen=True, slots=True)
class RpcResponse:
    """Single decoded reply."""

    id: int | str | None
    result: Any = None
    error: RpcError | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def ok(self) -> bool:
        return self.error is None
