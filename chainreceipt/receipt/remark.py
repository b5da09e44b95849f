"""Decoding of ``system.remark`` payloads.

A remark is free-form bytes on chain. The indexer and the node present it either
as readable text or as ``0x``-prefixed hex of the UTF-8 text, and the text is
usually a JSON object (a plain receipt or an encrypted envelope). Decoding tries,
in order:

    1. the text as JSON                      -> Structured(encoding="text")
    2. the text as hex, its bytes as JSON    -> Structured(encoding="hex")
    3. the text as hex that is not JSON      -> HexEncoded
    4. anything else                         -> Opaque
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from chainreceipt.util.codec import dumps_json, hex_to_bytes, loads_json


class MalformedRemarkError(ValueError):
    """Raised when a remark is required to hold a JSON object but does not."""


@dataclass(frozen=True)
class Structured:
    value: Any
    encoding: Literal["text", "hex"] = "text"


@dataclass(frozen=True)
class HexEncoded:
    data: bytes


@dataclass(frozen=True)
class Opaque:
    text: str


RemarkPayload = Structured | HexEncoded | Opaque


def decode_remark(raw: str) -> RemarkPayload:
    """Decode a remark string into an explicit variant. Never raises."""
    try:
        return Structured(loads_json(raw), "text")
    except (json.JSONDecodeError, RecursionError):
        pass

    data = hex_to_bytes(raw)
    if data is None:
        return Opaque(raw)
    try:
        return Structured(loads_json(data.decode("utf-8")), "hex")
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
        return HexEncoded(data)


def remark_text(payload: RemarkPayload) -> str:
    """Best-effort human readable form of a decoded remark."""
    if isinstance(payload, Structured):
        return dumps_json(payload.value)
    if isinstance(payload, HexEncoded):
        return payload.data.decode("utf-8", errors="replace")
    return payload.text


def parse_remark_object(raw: str) -> dict[str, Any]:
    """Return the remark's JSON object or raise MalformedRemarkError."""
    payload = decode_remark(raw)
    if isinstance(payload, Structured) and isinstance(payload.value, dict):
        return payload.value
    raise MalformedRemarkError(f"remark is not a JSON object: {raw[:60]!r}")


def remark_envelope(payload: RemarkPayload | None) -> Mapping[str, Any] | None:
    """Return the envelope mapping when the remark is eligible for decryption."""
    if not isinstance(payload, Structured):
        return None
    value = payload.value
    if isinstance(value, dict) and "encrypted_receipt" in value and isinstance(value.get("recipients"), list):
        return value
    return None


def remark_receipt_fields(payload: RemarkPayload | None) -> Mapping[str, Any] | None:
    """Return the remark's object when it looks like a plain (unencrypted) receipt."""
    if not isinstance(payload, Structured):
        return None
    value = payload.value
    if isinstance(value, dict) and isinstance(value.get("receipt_id"), str):
        return value
    return None
