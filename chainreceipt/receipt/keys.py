"""Account keys and SS58 addresses.

Accounts are Ed25519 keys. Receipts are encrypted to the X25519 form of those
keys (the birational map between the Edwards and Montgomery curves), so a
recipient needs nothing beyond the public key behind their address.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import base58
from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey
from nacl.signing import SigningKey, VerifyKey

from chainreceipt.util.codec import hex_to_bytes

SS58_CHECKSUM_PREFIX = b"SS58PRE"
PUBLIC_KEY_LENGTH = 32

PublicIdentity = bytes | str


class InvalidIdentityError(ValueError):
    """Raised when a recipient identity cannot be turned into a public key."""


def _ss58_checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(SS58_CHECKSUM_PREFIX + payload, digest_size=64).digest()[:2]


def _prefix_bytes(prefix: int) -> bytes:
    if 0 <= prefix < 64:
        return bytes([prefix])
    if 64 <= prefix < 16384:
        first = ((prefix & 0b1111_1100) >> 2) | 0b0100_0000
        second = (prefix >> 8) | ((prefix & 0b11) << 6)
        return bytes([first, second])
    raise ValueError(f"SS58 prefix out of range: {prefix}")


def ss58_encode(public_key: bytes, prefix: int = 0) -> str:
    """Encode a 32-byte public key as an SS58 address."""
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}")
    payload = _prefix_bytes(prefix) + public_key
    return base58.b58encode(payload + _ss58_checksum(payload)).decode("ascii")


def ss58_decode(address: str) -> tuple[int, bytes]:
    """Decode an SS58 address into (prefix, public key).

    Raises:
        InvalidIdentityError: for bad base58, length or checksum.
    """
    try:
        raw = base58.b58decode(address)
    except ValueError as exc:
        raise InvalidIdentityError(f"not a base58 address: {address!r}") from exc

    if raw and raw[0] & 0b0100_0000:
        if len(raw) < 2:
            raise InvalidIdentityError(f"truncated SS58 address: {address!r}")
        prefix_len = 2
        lower = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6)
        upper = raw[1] & 0b0011_1111
        prefix = lower | (upper << 8)
    else:
        prefix_len = 1
        prefix = raw[0] if raw else 0

    if len(raw) != prefix_len + PUBLIC_KEY_LENGTH + 2:
        raise InvalidIdentityError(f"unexpected SS58 address length: {address!r}")

    payload, checksum = raw[:-2], raw[-2:]
    if _ss58_checksum(payload) != checksum:
        raise InvalidIdentityError(f"SS58 checksum mismatch: {address!r}")
    return prefix, payload[prefix_len:]


def public_key_from_identity(identity: PublicIdentity) -> bytes:
    """Resolve raw key bytes, ``0x`` hex or an SS58 address to Ed25519 public key bytes."""
    if isinstance(identity, bytes):
        if len(identity) != PUBLIC_KEY_LENGTH:
            raise InvalidIdentityError(f"public key must be {PUBLIC_KEY_LENGTH} bytes")
        return identity
    if identity.startswith("0x"):
        key = hex_to_bytes(identity)
        if key is None or len(key) != PUBLIC_KEY_LENGTH:
            raise InvalidIdentityError(f"not a 32-byte hex public key: {identity!r}")
        return key
    return ss58_decode(identity)[1]


def encryption_public_key(identity: PublicIdentity) -> PublicKey:
    """X25519 public key for a recipient's Ed25519 identity."""
    try:
        return VerifyKey(public_key_from_identity(identity)).to_curve25519_public_key()
    except CryptoError as exc:
        raise InvalidIdentityError(f"not a valid Ed25519 public key: {identity!r}") from exc


def normalize_account(value: Any, prefix: int = 0) -> str:
    """Normalize an account as the indexer or node reports it into an SS58 address.

    Accepts ``{"Id": "0x…"}``/``{"id": …}`` wrappers, ``0x`` hex public keys
    and plain addresses (returned unchanged).
    """
    if isinstance(value, Mapping):
        value = value.get("Id") or value.get("id") or ""
    if not isinstance(value, str):
        return ""
    if value.startswith("0x"):
        key = hex_to_bytes(value)
        if key is not None and len(key) == PUBLIC_KEY_LENGTH:
            return ss58_encode(key, prefix)
    return value


@dataclass(frozen=True)
class ViewerKeys:
    """Key material of the local account."""

    signing_key: SigningKey

    @classmethod
    def from_seed(cls, seed: bytes) -> ViewerKeys:
        if len(seed) != 32:
            raise ValueError("seed must be 32 bytes")
        return cls(SigningKey(seed))

    @classmethod
    def generate(cls) -> ViewerKeys:
        return cls(SigningKey.generate())

    @property
    def public_key(self) -> bytes:
        return bytes(self.signing_key.verify_key)

    @property
    def encryption_key(self) -> PrivateKey:
        return self.signing_key.to_curve25519_private_key()

    def address(self, prefix: int = 0) -> str:
        return ss58_encode(self.public_key, prefix)
