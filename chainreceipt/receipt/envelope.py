"""Multi-recipient encryption of receipts.

A receipt is encrypted once with AES-256-GCM under a random content key ``K``.
``K`` is then wrapped separately for every recipient with ``crypto_box``
(X25519 + XSalsa20-Poly1305) using a fresh ephemeral key pair, so each party
that can read the receipt holds only its own slot.

Wire form (all binary values base64)::

    {
      "encrypted_receipt": "...",        # AES-GCM ciphertext || tag
      "aes_iv": "...",                   # 12 bytes
      "recipients": [
        {"ephemeral_public_key": "...", "encrypted_key": "...", "nonce": "..."}
      ]
    }
"""

from __future__ import annotations

import base64
import binascii
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from chainreceipt.domain.receipt import Receipt, receipt_from_json, receipt_to_json
from chainreceipt.receipt.keys import PublicIdentity, encryption_public_key
from chainreceipt.runtime.logging import get_logger
from chainreceipt.util.codec import bytes_to_hex, dumps_json

logger = get_logger(__name__)

CONTENT_KEY_SIZE = 32
IV_SIZE = 12


class EnvelopeFormatError(ValueError):
    """Raised when a wire object is not a well-formed envelope."""


class EnvelopeDecryptionError(Exception):
    """Base class for failures while opening an envelope."""


class NotAddressedToCaller(EnvelopeDecryptionError):
    """No recipient slot opens with the caller's key."""


class AuthenticationFailed(EnvelopeDecryptionError):
    """The receipt ciphertext did not authenticate under the recovered key."""


class MalformedPlaintext(EnvelopeDecryptionError):
    """The decrypted bytes are not a valid receipt."""


@dataclass(frozen=True)
class RecipientSlot:
    ephemeral_public_key: bytes
    wrapped_key: bytes
    nonce: bytes

    def to_wire(self) -> dict[str, str]:
        return {
            "ephemeral_public_key": _b64(self.ephemeral_public_key),
            "encrypted_key": _b64(self.wrapped_key),
            "nonce": _b64(self.nonce),
        }

    @classmethod
    def from_wire(cls, data: Any) -> RecipientSlot:
        if not isinstance(data, Mapping):
            raise EnvelopeFormatError("recipient slot must be an object")
        return cls(
            ephemeral_public_key=_unb64(data, "ephemeral_public_key"),
            wrapped_key=_unb64(data, "encrypted_key"),
            nonce=_unb64(data, "nonce"),
        )


@dataclass(frozen=True)
class EncryptedEnvelope:
    ciphertext: bytes
    iv: bytes
    recipients: tuple[RecipientSlot, ...]

    def to_wire(self) -> dict[str, Any]:
        return {
            "encrypted_receipt": _b64(self.ciphertext),
            "aes_iv": _b64(self.iv),
            "recipients": [slot.to_wire() for slot in self.recipients],
        }

    @classmethod
    def from_wire(cls, data: Any) -> EncryptedEnvelope:
        """Parse the wire object.

        Raises:
            EnvelopeFormatError: on missing fields or invalid base64.
        """
        if not is_envelope_payload(data):
            raise EnvelopeFormatError("not an envelope: expected 'encrypted_receipt' and a 'recipients' list")
        return cls(
            ciphertext=_unb64(data, "encrypted_receipt"),
            iv=_unb64(data, "aes_iv"),
            recipients=tuple(RecipientSlot.from_wire(slot) for slot in data["recipients"]),
        )


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: Mapping[str, Any], key: str) -> bytes:
    value = data.get(key)
    if not isinstance(value, str):
        raise EnvelopeFormatError(f"envelope field {key!r} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise EnvelopeFormatError(f"envelope field {key!r} is not valid base64") from exc


def is_envelope_payload(value: Any) -> bool:
    return isinstance(value, Mapping) and "encrypted_receipt" in value and isinstance(value.get("recipients"), list)


def seal_receipt(receipt: Receipt, recipients: Iterable[PublicIdentity]) -> EncryptedEnvelope:
    """Encrypt ``receipt`` so that each of ``recipients`` can open it.

    Raises:
        ValueError: if no recipients are given.
        InvalidIdentityError: if a recipient is not a usable public key.
    """
    recipient_keys = [encryption_public_key(identity) for identity in recipients]
    if not recipient_keys:
        raise ValueError("an envelope needs at least one recipient")

    content_key = AESGCM.generate_key(bit_length=256)
    iv = os.urandom(IV_SIZE)
    ciphertext = AESGCM(content_key).encrypt(iv, receipt_to_json(receipt).encode("utf-8"), None)

    slots = []
    for public_key in recipient_keys:
        ephemeral = PrivateKey.generate()
        nonce = os.urandom(Box.NONCE_SIZE)
        wrapped = Box(ephemeral, public_key).encrypt(content_key, nonce).ciphertext
        slots.append(RecipientSlot(bytes(ephemeral.public_key), wrapped, nonce))

    return EncryptedEnvelope(ciphertext=ciphertext, iv=iv, recipients=tuple(slots))


def _unwrap_content_key(envelope: EncryptedEnvelope, private_key: PrivateKey) -> bytes | None:
    for position, slot in enumerate(envelope.recipients):
        try:
            box = Box(private_key, PublicKey(slot.ephemeral_public_key))
            return box.decrypt(slot.wrapped_key, slot.nonce)
        except CryptoError:
            logger.debug("Recipient slot %d does not open with this key", position)
    return None


def open_receipt(envelope: EncryptedEnvelope | Mapping[str, Any], private_key: PrivateKey) -> Receipt:
    """Decrypt an envelope with the caller's X25519 private key.

    Raises:
        EnvelopeFormatError: if given a wire mapping that is not an envelope.
        NotAddressedToCaller: no recipient slot opens.
        AuthenticationFailed: the ciphertext does not authenticate.
        MalformedPlaintext: the plaintext is not a receipt.
    """
    if not isinstance(envelope, EncryptedEnvelope):
        envelope = EncryptedEnvelope.from_wire(envelope)

    content_key = _unwrap_content_key(envelope, private_key)
    if content_key is None:
        raise NotAddressedToCaller(f"none of {len(envelope.recipients)} recipient slots opens with this key")

    try:
        plaintext = AESGCM(content_key).decrypt(envelope.iv, envelope.ciphertext, None)
    except (InvalidTag, ValueError) as exc:
        raise AuthenticationFailed("receipt ciphertext failed authentication") from exc

    try:
        return receipt_from_json(plaintext.decode("utf-8"))
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedPlaintext(f"decrypted payload is not a receipt: {exc}") from exc


def envelope_to_remark(envelope: EncryptedEnvelope) -> str:
    """Hex form of the wire JSON, as written into a ``system.remark`` call."""
    return bytes_to_hex(dumps_json(envelope.to_wire()).encode("utf-8"))
