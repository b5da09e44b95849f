"""Tests for receipt lookup by transaction reference."""

from __future__ import annotations

import asyncio

import pytest

from chainreceipt.application.history.lookup import ReceiptLookupError, TxReference, lookup_receipt
from chainreceipt.domain.receipt import Receipt
from chainreceipt.ledger_access.node import Block, InMemoryLedgerClient, LedgerCall
from chainreceipt.receipt.envelope import envelope_to_remark, seal_receipt
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.tests.helpers import ledger_batch

BLOCK = "0xb1"
REFERENCE = f"block:{BLOCK}:tx:0xaa"


@pytest.fixture
def ledger(receipt: Receipt, buyer: ViewerKeys, merchant: ViewerKeys) -> InMemoryLedgerClient:
    remark = envelope_to_remark(seal_receipt(receipt, [buyer.public_key, merchant.public_key]))
    client = InMemoryLedgerClient()
    client.add_block(
        Block(
            BLOCK,
            [
                LedgerCall("Timestamp", "set", {"now": 1}, hash="0x01"),
                ledger_batch(merchant, 10, remark, "0xAA"),
                ledger_batch(merchant, 10, "0x7b7d", "0xbb"),
                LedgerCall("Balances", "transfer_keep_alive", {"dest": merchant.address(), "value": 1}, hash="0xcc"),
            ],
        )
    )
    return client


def _lookup(ledger: InMemoryLedgerClient, reference: str, keys: ViewerKeys) -> Receipt:
    return asyncio.run(lookup_receipt(ledger, reference, keys))


def _failure(ledger: InMemoryLedgerClient, reference: str, keys: ViewerKeys) -> str:
    with pytest.raises(ReceiptLookupError) as excinfo:
        _lookup(ledger, reference, keys)
    return excinfo.value.reason


def test_every_recipient_can_look_up_the_receipt(
    ledger: InMemoryLedgerClient, receipt: Receipt, buyer: ViewerKeys, merchant: ViewerKeys
) -> None:
    assert _lookup(ledger, REFERENCE, buyer) == receipt
    assert _lookup(ledger, REFERENCE, merchant) == receipt
    assert ledger.requests == [BLOCK, BLOCK]


def test_lookup_failures_name_the_failed_step(ledger: InMemoryLedgerClient, outsider: ViewerKeys) -> None:
    assert _failure(ledger, "block:0xb2:tx:0xaa", outsider) == "block_unavailable"
    assert _failure(ledger, f"block:{BLOCK}:tx:0xdd", outsider) == "transaction_not_found"
    assert _failure(ledger, f"block:{BLOCK}:tx:0xcc", outsider) == "not_a_batch"
    assert _failure(ledger, f"block:{BLOCK}:tx:0xbb", outsider) == "no_encrypted_receipt"
    assert _failure(ledger, REFERENCE, outsider) == "not_decryptable"


def test_reference_parsing() -> None:
    reference = TxReference.parse(" block:0xb1:tx:0xaa\n")

    assert reference == TxReference(block_hash="0xb1", tx_hash="0xaa")
    assert str(reference) == "block:0xb1:tx:0xaa"


@pytest.mark.parametrize(
    "text",
    ["", "block:0xb1", "tx:0xaa:block:0xb1", "block:b1:tx:0xaa", "block:0xb1:tx:0xzz", "block:0xb1:tx:0xaa:extra"],
)
def test_reference_parsing_rejects_other_text(text: str) -> None:
    with pytest.raises(ValueError):
        TxReference.parse(text)
