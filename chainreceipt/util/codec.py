"""JSON and hex helpers shared by the receipt, remark and envelope codecs.

Kept free of other chainreceipt imports so every layer can use it.
"""

from __future__ import annotations

import binascii
import json
from decimal import Decimal
from typing import Any


def normalize_hex_prefix(value: str) -> str:
    """Collapse repeated ``0x`` prefixes (``0x0xab`` -> ``0xab``)."""
    if not value.startswith("0x"):
        return value
    body = value
    while body.startswith("0x"):
        body = body[2:]
    return "0x" + body


def hex_to_bytes(value: str) -> bytes | None:
    """Decode optional-``0x`` hex; None when the text is not hex."""
    body = normalize_hex_prefix(value.strip())
    if body.startswith("0x"):
        body = body[2:]
    if not body or len(body) % 2:
        return None
    try:
        return binascii.unhexlify(body)
    except binascii.Error:
        return None


def bytes_to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def _decimal_text(value: Decimal) -> str:
    if not value.is_finite():
        return json.dumps(float(value))
    exponent = value.as_tuple().exponent
    if isinstance(exponent, int) and exponent >= 0:
        return str(int(value))
    return format(value, "f")


def _encode(value: Any) -> str:
    if isinstance(value, Decimal):
        return _decimal_text(value)
    if isinstance(value, dict):
        members = (f"{json.dumps(str(key), ensure_ascii=False)}:{_encode(item)}" for key, item in value.items())
        return "{" + ",".join(members) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    return json.dumps(value, ensure_ascii=False)


def dumps_json(value: Any) -> str:
    """Compact JSON with Decimals written as exact plain numbers."""
    return _encode(value)


def loads_json(text: str | bytes) -> Any:
    """Parse JSON keeping fractional numbers exact."""
    return json.loads(text, parse_float=Decimal)
