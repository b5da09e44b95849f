"""Shared pytest fixtures for chainreceipt tests.

Keys are derived from fixed seeds so addresses are stable across runs. No test
touches the network: indexer responses come from ``FakeIndexer`` or
``httpx.MockTransport`` and ledger blocks from ``InMemoryLedgerClient``.
"""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path

import pytest

from chainreceipt.domain.receipt import CartLine, Merchant, Receipt, Sender, issue_receipt, receipt_to_json
from chainreceipt.ledger_access.indexer import CallDetail, ExtrinsicSummary, TransferSummary
from chainreceipt.ledger_access.node import Block, InMemoryLedgerClient
from chainreceipt.receipt.envelope import envelope_to_remark, seal_receipt
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.runtime import reset_config
from chainreceipt.tests.helpers import (
    FakeIndexer,
    LedgerScenario,
    indexer_remark_call,
    indexer_transfer_call,
    ledger_batch,
)
from chainreceipt.util.codec import bytes_to_hex


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("CHAINRECEIPT_CONFIG", str(tmp_path / "missing-config.toml"))
    monkeypatch.setenv("CHAINRECEIPT_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("SUBSCAN_API_KEY", raising=False)
    monkeypatch.delenv("CHAINRECEIPT_INDEXER_URL", raising=False)
    monkeypatch.delenv("CHAINRECEIPT_NODE_URL", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def buyer() -> ViewerKeys:
    return ViewerKeys.from_seed(bytes([1]) * 32)


@pytest.fixture
def merchant() -> ViewerKeys:
    return ViewerKeys.from_seed(bytes([2]) * 32)


@pytest.fixture
def outsider() -> ViewerKeys:
    return ViewerKeys.from_seed(bytes([3]) * 32)


@pytest.fixture
def receipt(buyer: ViewerKeys, merchant: ViewerKeys) -> Receipt:
    return issue_receipt(
        Merchant(name="Corner Shop", business_id="B-1", address=merchant.address()),
        Sender(address=buyer.address()),
        [
            CartLine(id="sku-1", name="Tea", qty=2, price=Decimal("3.50")),
            CartLine(id="sku-2", name="Mug", qty=1, price=Decimal("12.00"), returnable=False),
        ],
        receipt_id="r1",
    )



@pytest.fixture
def scenario(buyer: ViewerKeys, merchant: ViewerKeys, receipt: Receipt) -> LedgerScenario:
    """A buyer's history seen through both ledger views.

    0xaa  ts 1000  send, batch with encrypted receipt     (extrinsics + transfers)
    0xbb  ts 2000  send, bare transfer                    (extrinsics)
    0xcc           detail lookup fails                    (extrinsics)
    0xdd           staking call, not a transfer           (extrinsics)
    0xee  ts 1500  receive, batch with plain return JSON  (transfers, node resolves)
    0xff  ts 1500  receive, block missing on the node     (transfers, summary only)
    """
    buyer_address = buyer.address()
    merchant_address = merchant.address()
    encrypted_remark = envelope_to_remark(seal_receipt(receipt, [buyer.public_key, merchant.public_key]))
    return_remark = bytes_to_hex(
        receipt_to_json(receipt).replace('"receipt_id":"r1"', '"receipt_id":"r2","original_receipt_id":"r1"')
        .replace('"status":"issuer"', '"status":"partial_return"')
        .encode("utf-8")
    )

    indexer = FakeIndexer(
        extrinsics=[
            ExtrinsicSummary("100-1", "0xaa", 1000, buyer_address),
            ExtrinsicSummary("101-1", "0xbb", 2000, buyer_address),
            ExtrinsicSummary("102-1", "0xcc", 2500, buyer_address),
            ExtrinsicSummary("103-1", "0xdd", 2600, buyer_address),
        ],
        transfers=[
            TransferSummary("0xaa", buyer_address, merchant_address, 1000, "0xb100", "1.5", "15000000000", "100-1"),
            TransferSummary("0xee", merchant_address, buyer_address, 1500, "0xb200", "0.5", "5000000000", "200-0"),
            TransferSummary("0xff", merchant_address, buyer_address, 1500, "0xb300", "2", "20000000000", "300-0"),
        ],
        details={
            "100-1": CallDetail(
                extrinsic_index="100-1",
                extrinsic_hash="0xaa",
                call_module="utility",
                call_module_function="batch_all",
                params=[
                    {
                        "name": "calls",
                        "value": [indexer_transfer_call(merchant, 15_000_000_000), indexer_remark_call(encrypted_remark)],
                    }
                ],
                account_id=buyer_address,
                block_timestamp=1000,
                block_hash="0xb100",
            ),
            "101-1": CallDetail(
                extrinsic_index="101-1",
                extrinsic_hash="0xbb",
                call_module="balances",
                call_module_function="transfer_keep_alive",
                params=[
                    {"name": "dest", "value": {"Id": bytes_to_hex(merchant.public_key)}},
                    {"name": "value", "value": "10000000000"},
                ],
                account_id=buyer_address,
                block_timestamp=2000,
                block_hash="0xb101",
            ),
            "103-1": CallDetail(
                extrinsic_index="103-1",
                extrinsic_hash="0xdd",
                call_module="staking",
                call_module_function="bond",
                account_id=buyer_address,
                block_timestamp=2600,
            ),
        },
    )

    ledger = InMemoryLedgerClient()
    ledger.add_block(Block("0xb200", [ledger_batch(buyer, 5_000_000_000, return_remark, "0xee")]), number=200)
    return LedgerScenario(address=buyer_address, indexer=indexer, ledger=ledger, receipt=receipt)
