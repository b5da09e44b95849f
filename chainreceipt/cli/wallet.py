"""Wallet command handlers used by the unified CLI."""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from chainreceipt.domain.history import TxHistoryItem
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.runtime import WalletConfig, get_config, get_logger
from chainreceipt.util.codec import dumps_json, hex_to_bytes

if TYPE_CHECKING:
    from chainreceipt.ledger_access.indexer import IndexerClient
    from chainreceipt.ledger_access.node import SubstrateLedgerClient
    from chainreceipt.transport.display import FrameCarousel

logger = get_logger(__name__)

HISTORY_UNAVAILABLE = "History unavailable, retry later."


def viewer_keys_from_hex(seed_hex: str | None) -> ViewerKeys | None:
    if not seed_hex:
        return None
    seed = hex_to_bytes(seed_hex)
    if seed is None or len(seed) != 32:
        raise ValueError("--seed-hex must be 32 bytes of hex")
    return ViewerKeys.from_seed(seed)


@asynccontextmanager
async def open_clients(config: WalletConfig) -> AsyncIterator[tuple[IndexerClient, SubstrateLedgerClient]]:
    """Indexer and ledger node clients for one command run."""
    from chainreceipt.ledger_access.indexer import IndexerClient
    from chainreceipt.ledger_access.node import SubstrateLedgerClient

    ledger = SubstrateLedgerClient(config.node_url)
    async with IndexerClient.from_config(config) as indexer:
        try:
            yield indexer, ledger
        finally:
            await ledger.close()


def _format_item(item: TxHistoryItem) -> str:
    when = dt.datetime.fromtimestamp(item.timestamp).strftime("%d %b %Y %H:%M") if item.timestamp else "-"
    sign = "-" if item.direction == "send" else "+"
    party = item.counterparty_name or item.counterparty_address
    line = f"{when}  {item.direction:<7} {sign}{item.amount:f}  {party}"
    if item.decrypted_receipt is not None:
        line += f"  receipt {item.decrypted_receipt.receipt_id} ({item.decrypted_receipt.status})"
    if item.is_return:
        line += "  [return]"
    return line


async def _history(args: argparse.Namespace, config: WalletConfig) -> int:
    from chainreceipt.application.history.reconcile import HistoryReconciler, history_summary
    from chainreceipt.ledger_access.indexer import LedgerQueryError
    from chainreceipt.runtime.cache import FileCache

    viewer_keys = viewer_keys_from_hex(args.seed_hex)
    cache = FileCache(config.history_cache_dir)
    async with open_clients(config) as (indexer, ledger):
        reconciler = HistoryReconciler(
            indexer,
            ledger,
            viewer_keys=viewer_keys,
            cache=cache,
            ss58_prefix=config.ss58_prefix,
            token_decimals=config.token_decimals,
            extrinsic_limit=config.extrinsic_limit,
            transfer_page_size=config.transfer_page_size,
            detail_concurrency=config.detail_concurrency,
        )
        try:
            history = await reconciler.reconcile(args.address, page_size=args.page_size or config.page_size)
        except LedgerQueryError as exc:
            logger.error(f"History query failed: {exc}")
            print(HISTORY_UNAVAILABLE)
            return 1

    if args.json:
        print(dumps_json([item.to_dict() for item in history]))
        return 0
    if not history:
        print("No transactions found.")
        return 0
    for item in history:
        print(_format_item(item))
    summary = history_summary(history)
    print(f"{summary['transactions']} transactions, {summary['with_receipt']} with receipts, {summary['returns']} returns")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """Reconcile and print an account's transaction history."""
    try:
        return asyncio.run(_history(args, get_config()))
    except ValueError as exc:
        print(str(exc))
        return 1


def _read_payload(source: str) -> bytes:
    if source.startswith("@"):
        return Path(source[1:]).read_bytes()
    payload = hex_to_bytes(source)
    if payload is None:
        raise ValueError(f"payload is neither hex nor @file: {source[:40]!r}")
    return payload


async def _loop_frames(carousel: FrameCarousel) -> None:
    def show(text: str) -> None:
        sys.stdout.write("\x1b[2J\x1b[H" + text + "\n")
        sys.stdout.flush()

    await carousel.run(show, asyncio.Event())


def cmd_frames(args: argparse.Namespace) -> int:
    """Print the QR frame texts for a call payload."""
    from chainreceipt.transport.display import FrameCarousel
    from chainreceipt.transport.frames import encode_frames

    config = get_config()
    try:
        payload = _read_payload(args.payload)
        chunk_size = config.qr_chunk_size if args.chunk_size is None else args.chunk_size
        frames = encode_frames(payload, chunk_size)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1

    if args.loop:
        try:
            asyncio.run(_loop_frames(FrameCarousel(frames, interval=config.qr_interval)))
        except KeyboardInterrupt:
            pass
        return 0

    for frame in frames:
        print(frame.to_json())
    return 0


async def _lookup(args: argparse.Namespace, config: WalletConfig, viewer_keys: ViewerKeys) -> int:
    from chainreceipt.application.history.lookup import ReceiptLookupError, lookup_receipt
    from chainreceipt.domain.receipt import receipt_to_json

    async with open_clients(config) as (_, ledger):
        try:
            receipt = await lookup_receipt(ledger, args.reference, viewer_keys)
        except ReceiptLookupError as exc:
            print(f"Receipt lookup failed ({exc.reason}): {exc}")
            return 1
    print(receipt_to_json(receipt))
    return 0


def cmd_lookup(args: argparse.Namespace) -> int:
    """Fetch and decrypt the receipt of one transaction."""
    try:
        viewer_keys = viewer_keys_from_hex(args.seed_hex)
        if viewer_keys is None:
            print("--seed-hex is required for lookup")
            return 1
        return asyncio.run(_lookup(args, get_config(), viewer_keys))
    except ValueError as exc:
        print(str(exc))
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the companion service."""
    from chainreceipt.runtime.server import serve

    viewer_keys = viewer_keys_from_hex(args.seed_hex)
    print(f"Starting chainreceipt service on {args.host}:{args.port}")
    print("Press Ctrl+C to stop")
    serve(host=args.host, port=args.port, viewer_keys=viewer_keys)
    return 0
