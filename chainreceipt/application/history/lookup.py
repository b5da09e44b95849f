"""Lookup of a single receipt by transaction reference."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from chainreceipt.domain.receipt import Receipt
from chainreceipt.ledger_access.calls import is_batch, is_remark
from chainreceipt.ledger_access.node import LedgerCall, LedgerClient, LedgerClientError
from chainreceipt.receipt.envelope import EnvelopeDecryptionError, EnvelopeFormatError, open_receipt
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.receipt.remark import decode_remark, remark_envelope
from chainreceipt.runtime import get_logger
from chainreceipt.util.codec import hex_to_bytes

logger = get_logger(__name__)

LookupFailure = Literal[
    "block_unavailable",
    "transaction_not_found",
    "not_a_batch",
    "no_encrypted_receipt",
    "not_decryptable",
]


class ReceiptLookupError(Exception):
    def __init__(self, reason: LookupFailure, message: str) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class TxReference:
    """``block:<block hash>:tx:<extrinsic hash>`` as shared in receipt QR codes."""

    block_hash: str
    tx_hash: str

    @classmethod
    def parse(cls, text: str) -> TxReference:
        parts = text.strip().split(":")
        if len(parts) != 4 or parts[0] != "block" or parts[2] != "tx":
            raise ValueError(f"not a transaction reference: {text!r}")
        block_hash, tx_hash = parts[1], parts[3]
        for value in (block_hash, tx_hash):
            if not value.startswith("0x") or hex_to_bytes(value) is None:
                raise ValueError(f"not a 0x hash: {value!r}")
        return cls(block_hash=block_hash, tx_hash=tx_hash)

    def __str__(self) -> str:
        return f"block:{self.block_hash}:tx:{self.tx_hash}"


def _remark_calls(call: LedgerCall) -> list[LedgerCall]:
    calls = call.args.get("calls") or []
    return [inner for inner in calls if isinstance(inner, LedgerCall) and is_remark(inner.section, inner.method)]


async def lookup_receipt(
    ledger: LedgerClient,
    reference: TxReference | str,
    viewer_keys: ViewerKeys,
) -> Receipt:
    """Fetch one transaction from the node and decrypt its receipt.

    Raises:
        ReceiptLookupError: with ``reason`` naming the step that failed.
    """
    if isinstance(reference, str):
        reference = TxReference.parse(reference)

    try:
        block = await ledger.get_block(reference.block_hash)
    except LedgerClientError as exc:
        raise ReceiptLookupError("block_unavailable", f"block {reference.block_hash} unavailable: {exc}") from exc

    call = block.find(reference.tx_hash)
    if call is None:
        raise ReceiptLookupError("transaction_not_found", f"{reference.tx_hash} not in block {reference.block_hash}")
    if not is_batch(call.section, call.method):
        raise ReceiptLookupError("not_a_batch", f"{reference.tx_hash} is {call.section}.{call.method}, not a batch")

    found_envelope = False
    for remark_call in _remark_calls(call):
        raw = remark_call.args.get("remark")
        if not isinstance(raw, str):
            continue
        envelope = remark_envelope(decode_remark(raw))
        if envelope is None:
            continue
        found_envelope = True
        try:
            return open_receipt(envelope, viewer_keys.encryption_key)
        except (EnvelopeDecryptionError, EnvelopeFormatError) as exc:
            logger.debug("Remark in %s did not open: %s", reference.tx_hash, exc)

    if not found_envelope:
        raise ReceiptLookupError("no_encrypted_receipt", f"{reference.tx_hash} carries no encrypted receipt")
    raise ReceiptLookupError("not_decryptable", f"no receipt in {reference.tx_hash} opens with this account's key")
