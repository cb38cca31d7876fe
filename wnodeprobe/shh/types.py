"""Whisper message types and wire helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wnodeprobe.utils.exceptions import ValidationError

TOPIC_LENGTH = 4
SYM_KEY_LENGTH = 32


def encode_hex(data: bytes) -> str:
    """Encode bytes as 0x-prefixed lowercase hex."""
    return "0x" + bytes(data).hex()


def decode_hex(value: Any, *, field_name: str = "value") -> bytes:
    """Decode a 0x-prefixed (or bare) hex string into bytes."""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a hex string, got {type(value).__name__}", field=field_name)
    text = value.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValidationError(f"{field_name} is not valid hex: {value[:80]!r}", field=field_name) from exc


def normalize_topic(value: str | bytes) -> str:
    """Return the canonical wire form of a topic: 0x + 8 lowercase hex digits."""
    raw = bytes(value) if isinstance(value, (bytes, bytearray)) else decode_hex(value, field_name="topic")
    if len(raw) != TOPIC_LENGTH:
        raise ValidationError(f"topic must be {TOPIC_LENGTH} bytes, got {len(raw)}", field="topic")
    return encode_hex(raw)


def normalize_key_material(value: str) -> str:
    """Validate raw symmetric key material and return it as 0x-prefixed hex."""
    raw = decode_hex(value, field_name="key material")
    if len(raw) != SYM_KEY_LENGTH:
        raise ValidationError(
            f"symmetric key must be {SYM_KEY_LENGTH} bytes, got {len(raw)}",
            field="key material",
        )
    return encode_hex(raw)


@dataclass(slots=True)
class MessageEnvelope:
    """Outbound message: topic, plaintext payload and delivery constraints."""

    topic: str
    payload: bytes
    pow_target: float = 0.001
    pow_time: int = 2
    ttl: int = 20

    def __post_init__(self) -> None:
        self.topic = normalize_topic(self.topic)
        if isinstance(self.payload, str):
            self.payload = self.payload.encode("utf-8")
        if self.pow_target <= 0:
            raise ValidationError("powTarget must be positive", field="pow_target")
        if self.pow_time <= 0:
            raise ValidationError("powTime must be positive", field="pow_time")
        if self.ttl <= 0:
            raise ValidationError("TTL must be positive", field="ttl")

    @classmethod
    def from_text(cls, topic: str, text: str, **constraints: Any) -> "MessageEnvelope":
        return cls(topic=topic, payload=text.encode("utf-8"), **constraints)

    def to_params(self, sym_key_id: str) -> dict[str, Any]:
        """Build the shh_post parameter object."""
        return {
            "symKeyID": sym_key_id,
            "topic": self.topic,
            "payload": encode_hex(self.payload),
            "powTarget": self.pow_target,
            "powTime": self.pow_time,
            "TTL": self.ttl,
        }


@dataclass(frozen=True, slots=True)
class ReceivedMessage:
    """Decrypted message returned by a filter poll."""

    topic: str
    payload: bytes
    hash: str = ""
    ttl: int = 0
    timestamp: int = 0
    pow: float = 0.0
    sig: str | None = None
    recipient_public_key: str | None = None
    padding: bytes = field(default=b"", repr=False)

    @classmethod
    def from_wire(cls, row: Any) -> "ReceivedMessage":
        if not isinstance(row, dict):
            raise ValidationError(f"message must be an object, got {type(row).__name__}", field="message")
        if "topic" not in row or "payload" not in row:
            raise ValidationError("message is missing topic or payload", field="message")
        padding = row.get("padding")
        try:
            return cls(
                topic=normalize_topic(row["topic"]),
                payload=decode_hex(row["payload"], field_name="payload"),
                hash=str(row.get("hash") or ""),
                ttl=int(row.get("ttl") or 0),
                timestamp=int(row.get("timestamp") or 0),
                pow=float(row.get("pow") or 0.0),
                sig=str(row["sig"]) if row.get("sig") else None,
                recipient_public_key=str(row["recipientPublicKey"]) if row.get("recipientPublicKey") else None,
                padding=decode_hex(padding, field_name="padding") if padding else b"",
            )
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"message has a malformed numeric field: {exc}", field="message") from exc

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    def matches(self, envelope: MessageEnvelope) -> bool:
        return self.topic == envelope.topic and self.payload == envelope.payload


@dataclass(frozen=True, slots=True)
class PostAck:
    """Node acknowledgement of shh_post; Whisper v6 answers with the envelope hash."""

    accepted: bool
    message_hash: str | None = None

    @classmethod
    def from_wire(cls, value: Any) -> "PostAck":
        if isinstance(value, bool):
            return cls(accepted=value)
        if isinstance(value, str) and value.strip():
            return cls(accepted=True, message_hash=value.strip())
        raise ValidationError(f"post acknowledgement must be a bool or hash, got {value!r}", field="ack")
