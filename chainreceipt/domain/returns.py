"""Return-chain tracking over a reconciled history.

Every return produces a new receipt whose ``original_receipt_id`` points back
along the chain. ``build_latest_map`` finds, for each root receipt, the newest
receipt in its chain; the eligibility helpers use that map to refuse returns
against stale or fully returned receipts.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Literal

from chainreceipt.domain.history import ReceiptRef, ReturnChainEntry, TxHistoryItem
from chainreceipt.domain.receipt import Receipt

logger = logging.getLogger(__name__)


def _resolve_root(ref: ReceiptRef, index: Mapping[str, ReceiptRef]) -> str:
    bound = len(index)
    root = ref.receipt_id
    current = ref
    steps = 0
    while current.original_receipt_id:
        steps += 1
        if steps > bound:
            logger.warning(
                "Receipt chain from %s does not terminate after %d steps; treating it as its own root",
                ref.receipt_id,
                bound,
            )
            return ref.receipt_id
        root = current.original_receipt_id
        parent = index.get(root)
        if parent is None:
            # Root is outside the fetched history; the dangling id is still the root.
            break
        current = parent
    return root


def build_latest_map(history: Iterable[TxHistoryItem]) -> dict[str, ReturnChainEntry]:
    """Map each root receipt id to the most recent receipt in its return chain."""
    items = list(history)

    index: dict[str, ReceiptRef] = {}
    for tx in items:
        ref = tx.receipt_ref()
        if ref is not None:
            index[ref.receipt_id] = ref

    latest: dict[str, ReturnChainEntry] = {}
    for tx in items:
        ref = tx.receipt_ref()
        if ref is None or not tx.timestamp:
            continue
        root = _resolve_root(ref, index)
        existing = latest.get(root)
        if existing is None or tx.timestamp > existing.latest_timestamp:
            latest[root] = ReturnChainEntry(
                root_receipt_id=root,
                latest_receipt_id=ref.receipt_id,
                latest_timestamp=tx.timestamp,
                latest_status=ref.status,
            )
    return latest


def remaining_returnable(receipt: Receipt) -> dict[str, int]:
    """Units still returnable per item id."""
    return {item.id: item.remaining_qty for item in receipt.items if item.returnable and item.remaining_qty > 0}


EligibilityStatus = Literal["eligible", "unrecognised", "stale", "fully_returned", "nothing_returnable"]

_MESSAGES: dict[str, str] = {
    "eligible": "Receipt can be returned.",
    "unrecognised": "Receipt is not recognised.",
    "stale": "A newer version of this receipt exists. Please scan the most recent receipt.",
    "fully_returned": "This receipt has already been fully returned.",
    "nothing_returnable": "No returnable items remaining on this receipt.",
}


@dataclass(frozen=True)
class ReturnEligibility:
    status: EligibilityStatus
    latest: ReturnChainEntry | None = None
    remaining: Mapping[str, int] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "eligible"

    @property
    def message(self) -> str:
        return _MESSAGES[self.status]


def check_return_eligibility(receipt: Receipt, latest_map: Mapping[str, ReturnChainEntry]) -> ReturnEligibility:
    """Decide whether a scanned receipt may start a new return."""
    entry = latest_map.get(receipt.root_receipt_id)
    if entry is None:
        return ReturnEligibility("unrecognised")
    if entry.latest_receipt_id != receipt.receipt_id:
        return ReturnEligibility("stale", latest=entry)
    if entry.latest_status == "returned" or receipt.status == "returned":
        return ReturnEligibility("fully_returned", latest=entry)
    remaining = remaining_returnable(receipt)
    if not remaining:
        return ReturnEligibility("nothing_returnable", latest=entry)
    return ReturnEligibility("eligible", latest=entry, remaining=remaining)
