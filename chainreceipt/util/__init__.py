"""Dependency-free helpers shared across chainreceipt layers."""

from .codec import bytes_to_hex, dumps_json, hex_to_bytes, loads_json, normalize_hex_prefix

__all__ = [
    "bytes_to_hex",
    "dumps_json",
    "hex_to_bytes",
    "loads_json",
    "normalize_hex_prefix",
]
