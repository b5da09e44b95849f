"""Fakes and call builders shared by the chainreceipt tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from chainreceipt.domain.receipt import Receipt
from chainreceipt.ledger_access.indexer import (
    CallDetail,
    DetailLookupError,
    ExtrinsicSummary,
    LedgerQueryError,
    TransferSummary,
)
from chainreceipt.ledger_access.node import InMemoryLedgerClient, LedgerCall
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.util.codec import bytes_to_hex


@dataclass
class FakeIndexer:
    """In-memory stand-in for IndexerClient."""

    extrinsics: list[ExtrinsicSummary] = field(default_factory=list)
    transfers: list[TransferSummary] = field(default_factory=list)
    details: dict[str, CallDetail] = field(default_factory=dict)
    fail_lists: bool = False
    detail_requests: list[str] = field(default_factory=list)

    async def list_extrinsics(self, address: str, page_size: int = 20, page: int = 0) -> list[ExtrinsicSummary]:
        if self.fail_lists:
            raise LedgerQueryError("indexer down")
        return list(self.extrinsics)

    async def list_transfers(self, address: str, page_size: int = 50, page: int = 0) -> list[TransferSummary]:
        if self.fail_lists:
            raise LedgerQueryError("indexer down")
        return list(self.transfers)

    async def get_extrinsic_detail(self, extrinsic_index: str) -> CallDetail:
        self.detail_requests.append(extrinsic_index)
        detail = self.details.get(extrinsic_index)
        if detail is None:
            raise DetailLookupError(f"no detail for {extrinsic_index}")
        return detail


def indexer_transfer_call(dest: ViewerKeys, planck: int) -> dict:
    return {
        "call_module": "Balances",
        "call_name": "transfer_keep_alive",
        "params": [
            {"name": "dest", "value": {"Id": bytes_to_hex(dest.public_key)}},
            {"name": "value", "value": str(planck)},
        ],
    }


def indexer_remark_call(remark: str) -> dict:
    return {"call_module": "System", "call_name": "remark", "params": [{"name": "remark", "value": remark}]}


def ledger_batch(dest: ViewerKeys, planck: int, remark: str | None, tx_hash: str) -> LedgerCall:
    calls = [LedgerCall("Balances", "transferKeepAlive", {"dest": {"Id": bytes_to_hex(dest.public_key)}, "value": planck})]
    if remark is not None:
        calls.append(LedgerCall("System", "remark", {"remark": remark}))
    return LedgerCall("Utility", "batchAll", {"calls": calls}, hash=tx_hash)


@dataclass
class LedgerScenario:
    address: str
    indexer: FakeIndexer
    ledger: InMemoryLedgerClient
    receipt: Receipt
