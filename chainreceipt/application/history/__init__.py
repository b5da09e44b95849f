"""History workflows: reconciliation and single-receipt lookup."""

from chainreceipt.application.history.lookup import ReceiptLookupError, TxReference, lookup_receipt
from chainreceipt.application.history.reconcile import (
    DecryptionCache,
    HistoryReconciler,
    history_summary,
    load_cached_history,
)

__all__ = [
    "DecryptionCache",
    "HistoryReconciler",
    "ReceiptLookupError",
    "TxReference",
    "history_summary",
    "load_cached_history",
    "lookup_receipt",
]
