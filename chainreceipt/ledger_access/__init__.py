"""Read access to the ledger through the indexer and a ledger node."""

from chainreceipt.ledger_access.calls import (
    TransferCall,
    classify_indexer_detail,
    classify_ledger_call,
    planck_to_units,
)
from chainreceipt.ledger_access.indexer import (
    CallDetail,
    DetailLookupError,
    ExtrinsicSummary,
    IndexerClient,
    LedgerQueryError,
    TransferSummary,
)
from chainreceipt.ledger_access.node import (
    Block,
    InMemoryLedgerClient,
    LedgerCall,
    LedgerClient,
    LedgerClientError,
    SubstrateLedgerClient,
)

__all__ = [
    "Block",
    "CallDetail",
    "DetailLookupError",
    "ExtrinsicSummary",
    "IndexerClient",
    "InMemoryLedgerClient",
    "LedgerCall",
    "LedgerClient",
    "LedgerClientError",
    "LedgerQueryError",
    "SubstrateLedgerClient",
    "TransferCall",
    "TransferSummary",
    "classify_indexer_detail",
    "classify_ledger_call",
    "planck_to_units",
]
