"""Transaction history reconciliation.

Merges the indexer's extrinsics view and transfers view of one account into a
single deduplicated history, resolving transfers through the ledger node where
the indexer only has a summary, and decrypting receipts addressed to the
viewer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Protocol

from chainreceipt.domain.history import Source, TxHistoryItem, remark_is_return
from chainreceipt.domain.receipt import Receipt, receipt_from_json, receipt_to_json
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
    TransferSummary,
)
from chainreceipt.ledger_access.node import LedgerClient, LedgerClientError
from chainreceipt.receipt.envelope import (
    EnvelopeDecryptionError,
    EnvelopeFormatError,
    NotAddressedToCaller,
    open_receipt,
)
from chainreceipt.receipt.keys import InvalidIdentityError, ViewerKeys, public_key_from_identity
from chainreceipt.receipt.remark import decode_remark, remark_envelope
from chainreceipt.runtime import get_logger
from chainreceipt.runtime.cache import KeyValueCache
from chainreceipt.util.codec import dumps_json, loads_json

logger = get_logger(__name__)

DECRYPTED_RECEIPT_PREFIX = "decrypted_receipt_"
HISTORY_PREFIX = "tx_history_"


class IndexerView(Protocol):
    async def list_extrinsics(self, address: str, page_size: int = 20, page: int = 0) -> list[ExtrinsicSummary]: ...

    async def list_transfers(self, address: str, page_size: int = 50, page: int = 0) -> list[TransferSummary]: ...

    async def get_extrinsic_detail(self, extrinsic_index: str) -> CallDetail: ...


def decrypted_receipt_key(tx_hash: str) -> str:
    return f"{DECRYPTED_RECEIPT_PREFIX}{tx_hash}"


def history_key(address: str) -> str:
    return f"{HISTORY_PREFIX}{address}"


class DecryptionCache:
    """Decrypted receipts by transaction hash.

    Held in memory, and mirrored to a key-value store when one is given so that
    later processes do not decrypt again.
    """

    def __init__(self, store: KeyValueCache | None = None) -> None:
        self.store = store
        self._receipts: dict[str, Receipt] = {}
        self._undecryptable: set[str] = set()

    def get(self, tx_hash: str) -> Receipt | None:
        receipt = self._receipts.get(tx_hash)
        if receipt is not None or self.store is None:
            return receipt
        raw = self.store.get(decrypted_receipt_key(tx_hash))
        if raw is None:
            return None
        try:
            receipt = receipt_from_json(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt cached receipt for %s: %s", tx_hash, exc)
            return None
        self._receipts[tx_hash] = receipt
        return receipt

    def put(self, tx_hash: str, receipt: Receipt) -> None:
        self._receipts[tx_hash] = receipt
        self._undecryptable.discard(tx_hash)
        if self.store is not None:
            self.store.set(decrypted_receipt_key(tx_hash), receipt_to_json(receipt))

    def mark_undecryptable(self, tx_hash: str) -> None:
        self._undecryptable.add(tx_hash)

    def is_undecryptable(self, tx_hash: str) -> bool:
        return tx_hash in self._undecryptable

    def __contains__(self, tx_hash: str) -> bool:
        return self.get(tx_hash) is not None


def load_cached_history(cache: KeyValueCache, address: str) -> list[TxHistoryItem] | None:
    """Read back the history persisted by the last reconcile() for ``address``."""
    raw = cache.get(history_key(address))
    if raw is None:
        return None
    try:
        return [TxHistoryItem.from_dict(entry) for entry in loads_json(raw)]
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Ignoring corrupt cached history for %s: %s", address, exc)
        return None


def _account_key(account: str) -> bytes | str:
    try:
        return public_key_from_identity(account)
    except InvalidIdentityError:
        return account


def same_account(left: str, right: str) -> bool:
    """Compare accounts by public key so that different SS58 prefixes still match."""
    if not left or not right:
        return False
    return left == right or _account_key(left) == _account_key(right)


def _summary_amount(transfer: TransferSummary, decimals: int) -> Decimal:
    if transfer.amount_v2 is not None:
        try:
            return planck_to_units(transfer.amount_v2, decimals)
        except InvalidOperation:
            pass
    try:
        return Decimal(transfer.amount)
    except InvalidOperation:
        return Decimal("0")


def _parse_extrinsic_index(value: str) -> tuple[int, int]:
    block, _, position = value.partition("-")
    if not block.isdigit() or not position.isdigit():
        raise ValueError(f"malformed extrinsic index {value!r}")
    return int(block), int(position)


class HistoryReconciler:
    """Builds an account's transaction history from both ledger views."""

    def __init__(
        self,
        indexer: IndexerView,
        ledger: LedgerClient,
        *,
        viewer_keys: ViewerKeys | None = None,
        cache: KeyValueCache | None = None,
        ss58_prefix: int = 0,
        token_decimals: int = 10,
        extrinsic_limit: int = 10,
        transfer_page_size: int = 50,
        detail_concurrency: int = 4,
    ) -> None:
        self.indexer = indexer
        self.ledger = ledger
        self.viewer_keys = viewer_keys
        self.cache = cache
        self.decryption_cache = DecryptionCache(cache)
        self.ss58_prefix = ss58_prefix
        self.token_decimals = token_decimals
        self.extrinsic_limit = extrinsic_limit
        self.transfer_page_size = transfer_page_size
        self.detail_concurrency = max(detail_concurrency, 1)

    async def reconcile(
        self,
        address: str,
        known_contacts: Mapping[str, str] | None = None,
        page_size: int = 20,
    ) -> list[TxHistoryItem]:
        """Return the account's history, newest first.

        Raises:
            LedgerQueryError: if either list query fails. Failures of single
                records are logged and skipped or degraded instead.
        """
        contacts = dict(known_contacts or {})
        extrinsics = await self.indexer.list_extrinsics(address, page_size, 0)
        transfers = await self.indexer.list_transfers(address, self.transfer_page_size, 0)
        extrinsics = extrinsics[: self.extrinsic_limit]
        logger.debug(
            "Reconciling %s: %d extrinsics, %d transfers",
            address,
            len(extrinsics),
            len(transfers),
        )

        semaphore = asyncio.Semaphore(self.detail_concurrency)

        items: dict[str, TxHistoryItem] = {}
        details = await asyncio.gather(*(self._fetch_detail(semaphore, extrinsic) for extrinsic in extrinsics))
        for extrinsic, detail in zip(extrinsics, details):
            if detail is None:
                continue
            item = self._item_from_detail(address, extrinsic, detail, contacts)
            if item is not None and item.id not in items:
                items[item.id] = item

        pending: list[TransferSummary] = []
        seen = set(items)
        for transfer in transfers:
            if not transfer.hash or transfer.hash in seen:
                continue
            seen.add(transfer.hash)
            pending.append(transfer)

        resolved = await asyncio.gather(
            *(self._item_from_transfer(semaphore, address, transfer, contacts) for transfer in pending)
        )
        for item in resolved:
            items.setdefault(item.id, item)

        history = [self._attach_receipt(item) for item in items.values()]
        # sorted() is stable, so equal timestamps keep discovery order.
        history = sorted(history, key=lambda tx: tx.timestamp, reverse=True)

        if self.cache is not None:
            self.cache.set(history_key(address), dumps_json([item.to_dict() for item in history]))
        return history

    async def _fetch_detail(self, semaphore: asyncio.Semaphore, extrinsic: ExtrinsicSummary) -> CallDetail | None:
        async with semaphore:
            try:
                return await self.indexer.get_extrinsic_detail(extrinsic.extrinsic_index)
            except DetailLookupError as exc:
                logger.warning("Skipping extrinsic %s: %s", extrinsic.extrinsic_index, exc)
                return None

    def _build_item(
        self,
        address: str,
        *,
        tx_hash: str,
        transfer: TransferCall,
        timestamp: int,
        block_ref: str,
        contacts: Mapping[str, str],
        source: Source,
    ) -> TxHistoryItem:
        is_send = same_account(transfer.sender, address)
        counterparty = transfer.dest if is_send else transfer.sender
        remark = decode_remark(transfer.remark) if transfer.remark else None
        return TxHistoryItem(
            id=tx_hash,
            direction="send" if is_send else "receive",
            counterparty_address=counterparty,
            counterparty_name=contacts.get(counterparty),
            amount=planck_to_units(transfer.value_planck, self.token_decimals),
            timestamp=timestamp,
            block_ref=block_ref,
            raw_remark=transfer.remark,
            remark=remark,
            is_return=remark_is_return(remark),
            source=source,
        )

    def _item_from_detail(
        self,
        address: str,
        extrinsic: ExtrinsicSummary,
        detail: CallDetail,
        contacts: Mapping[str, str],
    ) -> TxHistoryItem | None:
        transfer = classify_indexer_detail(detail, self.ss58_prefix)
        if transfer is None:
            logger.debug(
                "Extrinsic %s (%s.%s) is not a transfer",
                extrinsic.extrinsic_index,
                detail.call_module,
                detail.call_module_function,
            )
            return None
        if not transfer.sender:
            transfer = TransferCall(
                sender=extrinsic.account_id,
                dest=transfer.dest,
                value_planck=transfer.value_planck,
                remark=transfer.remark,
            )
        return self._build_item(
            address,
            tx_hash=detail.extrinsic_hash or extrinsic.hash,
            transfer=transfer,
            timestamp=detail.block_timestamp or extrinsic.block_timestamp,
            block_ref=detail.block_hash or detail.extrinsic_index,
            contacts=contacts,
            source="extrinsic",
        )

    async def _resolve_transfer(self, transfer: TransferSummary) -> tuple[TransferCall, str] | None:
        if not transfer.extrinsic_index:
            return None
        block_number, position = _parse_extrinsic_index(transfer.extrinsic_index)
        block = await self.ledger.get_block(block_number)
        if not 0 <= position < len(block.extrinsics):
            raise ValueError(f"block {block_number} has no extrinsic {position}")
        call = block.extrinsics[position]
        if call is None:
            return None
        resolved = classify_ledger_call(call, self.ss58_prefix)
        if resolved is None:
            return None
        # Direction follows the transfers view; nodes do not always report the signer.
        resolved = TransferCall(
            sender=transfer.sender,
            dest=resolved.dest or transfer.receiver,
            value_planck=resolved.value_planck,
            remark=resolved.remark,
        )
        return resolved, block.block_hash

    async def _item_from_transfer(
        self,
        semaphore: asyncio.Semaphore,
        address: str,
        transfer: TransferSummary,
        contacts: Mapping[str, str],
    ) -> TxHistoryItem:
        async with semaphore:
            try:
                resolved = await self._resolve_transfer(transfer)
            except (LedgerClientError, ValueError) as exc:
                logger.warning("Using summary for transfer %s: %s", transfer.hash, exc)
                resolved = None

        if resolved is not None:
            call, block_hash = resolved
            return self._build_item(
                address,
                tx_hash=transfer.hash,
                transfer=call,
                timestamp=transfer.block_timestamp,
                block_ref=block_hash or transfer.block_hash,
                contacts=contacts,
                source="transfer",
            )

        is_send = same_account(transfer.sender, address)
        counterparty = transfer.receiver if is_send else transfer.sender
        return TxHistoryItem(
            id=transfer.hash,
            direction="send" if is_send else "receive",
            counterparty_address=counterparty,
            counterparty_name=contacts.get(counterparty),
            amount=_summary_amount(transfer, self.token_decimals),
            timestamp=transfer.block_timestamp,
            block_ref=transfer.block_hash,
            source="transfer",
        )

    def _attach_receipt(self, item: TxHistoryItem) -> TxHistoryItem:
        envelope = remark_envelope(item.remark)
        if envelope is None:
            return item

        cached = self.decryption_cache.get(item.id)
        if cached is not None:
            return item.with_receipt(cached)
        if self.viewer_keys is None or self.decryption_cache.is_undecryptable(item.id):
            return item

        try:
            receipt = open_receipt(envelope, self.viewer_keys.encryption_key)
        except NotAddressedToCaller:
            logger.debug("Receipt in %s is not addressed to this account", item.id)
            self.decryption_cache.mark_undecryptable(item.id)
            return item
        except (EnvelopeDecryptionError, EnvelopeFormatError) as exc:
            logger.warning("Could not decrypt receipt in %s: %s", item.id, exc)
            self.decryption_cache.mark_undecryptable(item.id)
            return item

        self.decryption_cache.put(item.id, receipt)
        return item.with_receipt(receipt)


def history_summary(history: Sequence[TxHistoryItem]) -> dict[str, int]:
    """Counts used by the CLI and server for a one-line summary."""
    return {
        "transactions": len(history),
        "with_receipt": sum(1 for tx in history if tx.decrypted_receipt is not None),
        "returns": sum(1 for tx in history if tx.is_return),
    }
