"""
Exception hierarchy and error helpers for wnodeprobe.

Provides:
- Coded exception classes for RPC and node lifecycle failures
- Error categories (transport, protocol, decode, lifecycle)
- Safe error message formatting (no secret leak into logs)
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RETRYABLE = "retryable"
    PROTOCOL = "protocol"
    VALIDATION = "validation"
    LIFECYCLE = "lifecycle"
    TIMEOUT = "timeout"
    FATAL = "fatal"


class WnodeProbeError(Exception):
    """Base exception for all wnodeprobe errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class TransportError(WnodeProbeError):
    """Node unreachable: connection refused, timeout, or a non-RPC HTTP failure."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "RPC_NETWORK_ERROR",
        url: str | None = None,
        status_code: int | None = None,
    ):
        category = ErrorCategory.TIMEOUT if code == "RPC_TIMEOUT" else ErrorCategory.RETRYABLE
        super().__init__(
            message,
            code=code,
            category=category,
            details={"url": url, "status_code": status_code},
        )
        self.url = url
        self.status_code = status_code


class ProtocolError(WnodeProbeError):
    """Well-formed JSON-RPC error response returned by the node."""

    def __init__(self, rpc_code: int, rpc_message: str, *, method: str | None = None, data: Any = None):
        label = f"{method}: " if method else ""
        super().__init__(
            f"{label}rpc error {rpc_code}: {rpc_message}",
            code="RPC_PROTOCOL_ERROR",
            category=ErrorCategory.PROTOCOL,
            details={"rpc_code": rpc_code, "rpc_message": rpc_message, "method": method, "data": data},
        )
        self.rpc_code = rpc_code
        self.rpc_message = rpc_message
        self.method = method
        self.data = data


class DecodeError(WnodeProbeError):
    """Response body was not a usable JSON-RPC reply for the call that was made."""

    def __init__(self, message: str, *, method: str | None = None, body: str | None = None):
        details: dict[str, Any] = {"method": method}
        if body is not None:
            details["body"] = body[:200]
        super().__init__(message, code="RPC_DECODE_ERROR", category=ErrorCategory.VALIDATION, details=details)
        self.method = method


class ValidationError(WnodeProbeError):
    """Input validation error raised before a request is sent."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", category=ErrorCategory.VALIDATION, details=details)


class LifecycleError(WnodeProbeError):
    """Node process could not be spawned, probed or terminated."""

    def __init__(self, node: str, message: str, *, code: str = "LIFECYCLE_ERROR"):
        super().__init__(
            f"Node '{node}': {message}",
            code=code,
            category=ErrorCategory.LIFECYCLE,
            details={"node": node},
        )
        self.node = node


class SignalReuseError(WnodeProbeError):
    """A one-shot signal was fired or awaited more than once."""

    def __init__(self, name: str, action: str):
        super().__init__(
            f"one-shot signal '{name}' already {action}",
            code="SIGNAL_REUSE",
            category=ErrorCategory.FATAL,
            details={"signal": name, "action": action},
        )


class ScenarioError(WnodeProbeError):
    """A scenario step failed; wraps the underlying cause."""

    def __init__(self, step: str, message: str, *, code: str = "SCENARIO_STEP_FAILED", cause: Exception | None = None):
        details: dict[str, Any] = {"step": step}
        if isinstance(cause, WnodeProbeError):
            details["cause"] = cause.to_dict()
        elif cause is not None:
            details["cause"] = {"error": type(cause).__name__, "message": str(cause)}
        super().__init__(f"step '{step}' failed: {message}", code=code, category=ErrorCategory.FATAL, details=details)
        self.step = step
        self.cause = cause


_SENSITIVE_PATTERNS = [
    re.compile(r"(password|secret|token|passphrase)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"0x[0-9a-fA-F]{64}"),
    re.compile(r"[a-zA-Z0-9]{32,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]", secrets: list[str] | None = None) -> str:
    """Remove key material and secrets from messages before they are logged."""
    sanitized = message
    for secret in secrets or []:
        if secret:
            sanitized = sanitized.replace(secret, replacement)
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized

