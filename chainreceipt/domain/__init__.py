"""Core domain models for chainreceipt.

This package provides the data models used throughout the project:
- Receipt and its parts: the purchase/return record carried on chain
- TxHistoryItem, ReturnChainEntry: reconciled history records
- build_latest_map: return-chain tracking over a history

Usage:
    from chainreceipt.domain import Receipt, TxHistoryItem, build_latest_map
"""

from chainreceipt.domain.history import ReceiptRef, ReturnChainEntry, TxHistoryItem
from chainreceipt.domain.receipt import (
    CartLine,
    Merchant,
    Receipt,
    ReceiptItem,
    ReceiptMetadata,
    ReturnsSummary,
    Sender,
    Signatures,
    build_return_receipt,
    issue_receipt,
)
from chainreceipt.domain.returns import (
    ReturnEligibility,
    build_latest_map,
    check_return_eligibility,
    remaining_returnable,
)

__all__ = [
    "CartLine",
    "Merchant",
    "Receipt",
    "ReceiptItem",
    "ReceiptMetadata",
    "ReturnsSummary",
    "Sender",
    "Signatures",
    "build_return_receipt",
    "issue_receipt",
    "ReceiptRef",
    "ReturnChainEntry",
    "TxHistoryItem",
    "ReturnEligibility",
    "build_latest_map",
    "check_return_eligibility",
    "remaining_returnable",
]
