"""Whisper protocol client and message types."""

from .client import ShhClient
from .types import (
    MessageEnvelope,
    PostAck,
    ReceivedMessage,
    decode_hex,
    encode_hex,
    normalize_key_material,
    normalize_topic,
)

__all__ = [
    "MessageEnvelope",
    "PostAck",
    "ReceivedMessage",
    "ShhClient",
    "decode_hex",
    "encode_hex",
    "normalize_key_material",
    "normalize_topic",
]
