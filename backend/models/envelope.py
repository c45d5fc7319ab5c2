"""Envelope shape for an encrypted field and classification of stored values.

A protected field is persisted as ``{"ciphertext", "iv", "tag"}`` with each
part hex-encoded.  Rows written before encryption was introduced still hold
plain strings, so every stored value is classified once, at the persistence
boundary, into one of the ``StoredValue`` variants below.  The cipher only
ever dispatches on the variant.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ValidationError

ENVELOPE_FIELDS = ("ciphertext", "iv", "tag")


class Envelope(BaseModel):
    ciphertext: str
    iv: str
    tag: str

    model_config = {"frozen": True}

    @classmethod
    def from_bytes(cls, ciphertext: bytes, iv: bytes, tag: bytes) -> "Envelope":
        return cls(ciphertext=ciphertext.hex(), iv=iv.hex(), tag=tag.hex())

    def to_bytes(self) -> tuple[bytes, bytes, bytes]:
        """Decode the hex parts.  Raises ValueError on non-hex content."""
        return (
            bytes.fromhex(self.ciphertext),
            bytes.fromhex(self.iv),
            bytes.fromhex(self.tag),
        )

    def to_json(self) -> str:
        return self.model_dump_json()


# ─── Stored value variants ────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmptyValue:
    """``None`` or the empty string: nothing was stored."""


@dataclass(frozen=True)
class EnvelopeValue:
    envelope: Envelope


@dataclass(frozen=True)
class LegacyPlaintext:
    """A string without envelope shape, persisted before encryption existed."""

    text: str


@dataclass(frozen=True)
class MalformedValue:
    """Looks like an envelope but cannot be one (missing or mistyped parts)."""

    reason: str


StoredValue = Union[EmptyValue, EnvelopeValue, LegacyPlaintext, MalformedValue]


# ─── Codec ────────────────────────────────────────────────────────────────────


def _has_envelope_fields(data: Mapping) -> bool:
    return all(data.get(field) for field in ENVELOPE_FIELDS)


def _from_mapping(data: Mapping) -> StoredValue:
    missing = [field for field in ENVELOPE_FIELDS if not data.get(field)]
    if missing:
        return MalformedValue(f"missing envelope field(s): {', '.join(missing)}")
    try:
        envelope = Envelope.model_validate({field: data[field] for field in ENVELOPE_FIELDS})
    except ValidationError:
        return MalformedValue("envelope fields must be strings")
    return EnvelopeValue(envelope)


def _from_text(text: str) -> StoredValue:
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError):
        return LegacyPlaintext(text)
    if not isinstance(parsed, dict) or not _has_envelope_fields(parsed):
        return LegacyPlaintext(text)
    return _from_mapping(parsed)


def parse_stored_value(raw: Any) -> StoredValue:
    """Classify a persisted field value.

    Accepts an ``Envelope``, a mapping with envelope keys, JSON text of one,
    or a plain legacy string.
    """
    if raw is None or raw == "":
        return EmptyValue()
    if isinstance(raw, Envelope):
        return EnvelopeValue(raw)
    if isinstance(raw, str):
        return _from_text(raw)
    if isinstance(raw, Mapping):
        return _from_mapping(raw)
    return MalformedValue(f"unsupported stored type: {type(raw).__name__}")


def serialize_envelope(envelope: Envelope | None) -> str | None:
    """JSON text for a text column.  ``None`` stays ``None``."""
    if envelope is None:
        return None
    return envelope.to_json()
