"""Typed Whisper (shh) RPC client bound to one node endpoint."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import httpx

from wnodeprobe.rpc.transport import HttpRpcTransport
from wnodeprobe.shh.types import (
    MessageEnvelope,
    PostAck,
    ReceivedMessage,
    normalize_key_material,
    normalize_topic,
)
from wnodeprobe.utils.exceptions import DecodeError, ValidationError

SHH_VERSION = "shh_version"
SHH_NEW_SYM_KEY = "shh_newSymKey"
SHH_GET_SYM_KEY = "shh_getSymKey"
SHH_ADD_SYM_KEY = "shh_addSymKey"
SHH_NEW_MESSAGE_FILTER = "shh_newMessageFilter"
SHH_DELETE_MESSAGE_FILTER = "shh_deleteMessageFilter"
SHH_POST = "shh_post"
SHH_GET_FILTER_MESSAGES = "shh_getFilterMessages"


def _require_handle(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string", field=field_name)
    return value.strip()


def _expect_handle(result: Any, method: str) -> str:
    if not isinstance(result, str) or not result.strip():
        raise DecodeError(f"{method} returned {result!r}, expected a non-empty id string", method=method)
    return result.strip()


class ShhClient:
    """
    Whisper protocol operations against a single node.

    Each method issues exactly one RPC call and decodes its result into a
    typed value. Transport, protocol and decode failures propagate as
    TransportError, ProtocolError and DecodeError respectively. Handles
    returned by one node are meaningless to any other node.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        name: str | None = None,
    ):
        self.rpc = HttpRpcTransport(base_url, timeout=timeout, transport=transport)
        self.name = name or self.rpc.base_url

    @property
    def base_url(self) -> str:
        return self.rpc.base_url

    def __repr__(self) -> str:
        return f"ShhClient(name={self.name!r}, base_url={self.base_url!r})"

    async def version(self) -> str:
        """Protocol version reported by the node; used as the readiness probe."""
        result = await self.rpc.call(SHH_VERSION)
        if isinstance(result, bool) or not isinstance(result, (str, int, float)):
            raise DecodeError(f"{SHH_VERSION} returned {result!r}, expected a version", method=SHH_VERSION)
        return str(result)

    async def create_symmetric_key(self) -> str:
        """Ask the node to generate and hold a new symmetric key; returns its handle."""
        return _expect_handle(await self.rpc.call(SHH_NEW_SYM_KEY), SHH_NEW_SYM_KEY)

    async def fetch_symmetric_key(self, key_id: str) -> str:
        """Raw key material (0x hex) for a handle owned by this node."""
        key_id = _require_handle(key_id, "key_id")
        result = await self.rpc.call(SHH_GET_SYM_KEY, [key_id])
        try:
            return normalize_key_material(result)
        except ValidationError as exc:
            raise DecodeError(f"{SHH_GET_SYM_KEY} returned unusable key material: {exc.message}", method=SHH_GET_SYM_KEY) from exc

    async def install_symmetric_key(self, material: str) -> str:
        """Register externally supplied key material; returns a new handle local to this node."""
        material = normalize_key_material(material)
        return _expect_handle(await self.rpc.call(SHH_ADD_SYM_KEY, [material]), SHH_ADD_SYM_KEY)

    async def register_filter(self, key_id: str, topics: Iterable[str | bytes]) -> str:
        """Subscribe to messages decryptable by ``key_id`` on any of ``topics``."""
        key_id = _require_handle(key_id, "key_id")
        wire_topics = [normalize_topic(t) for t in topics]
        if not wire_topics:
            raise ValidationError("at least one topic is required", field="topics")
        params = [{"symKeyID": key_id, "topics": wire_topics}]
        return _expect_handle(await self.rpc.call(SHH_NEW_MESSAGE_FILTER, params), SHH_NEW_MESSAGE_FILTER)

    async def post_message(self, key_id: str, envelope: MessageEnvelope) -> PostAck:
        """Encrypt and submit ``envelope`` under ``key_id``."""
        key_id = _require_handle(key_id, "key_id")
        result = await self.rpc.call(SHH_POST, [envelope.to_params(key_id)])
        try:
            return PostAck.from_wire(result)
        except ValidationError as exc:
            raise DecodeError(exc.message, method=SHH_POST) from exc

    async def poll_filter(self, filter_id: str) -> list[ReceivedMessage]:
        """Messages matched since the previous poll; the node clears its buffer.

        An empty list means nothing is pending right now, not that nothing will
        ever arrive.
        """
        filter_id = _require_handle(filter_id, "filter_id")
        result = await self.rpc.call(SHH_GET_FILTER_MESSAGES, [filter_id])
        if result is None:
            return []
        if not isinstance(result, list):
            raise DecodeError(
                f"{SHH_GET_FILTER_MESSAGES} returned {type(result).__name__}, expected a list",
                method=SHH_GET_FILTER_MESSAGES,
            )
        try:
            return [ReceivedMessage.from_wire(row) for row in result]
        except ValidationError as exc:
            raise DecodeError(exc.message, method=SHH_GET_FILTER_MESSAGES) from exc

    async def delete_filter(self, filter_id: str) -> bool:
        filter_id = _require_handle(filter_id, "filter_id")
        result = await self.rpc.call(SHH_DELETE_MESSAGE_FILTER, [filter_id])
        if not isinstance(result, bool):
            raise DecodeError(f"{SHH_DELETE_MESSAGE_FILTER} returned {result!r}, expected a bool", method=SHH_DELETE_MESSAGE_FILTER)
        return result
