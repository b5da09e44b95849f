"""Local companion service for the wallet.

Serves reconciled history and return-chain state, and accepts scanned QR texts
so a camera front end can hand over animated frames one at a time.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chainreceipt.application.history.reconcile import HistoryReconciler
from chainreceipt.domain.history import TxHistoryItem
from chainreceipt.domain.returns import build_latest_map
from chainreceipt.ledger_access.indexer import IndexerClient, LedgerQueryError
from chainreceipt.ledger_access.node import LedgerClient, SubstrateLedgerClient
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.runtime.cache import FileCache, KeyValueCache
from chainreceipt.runtime.config import WalletConfig, get_config
from chainreceipt.runtime.logging import get_logger
from chainreceipt.transport.frames import FrameError, ScanSession, encode_frames
from chainreceipt.util.codec import hex_to_bytes

logger = get_logger(__name__)

HISTORY_UNAVAILABLE = "History unavailable, retry later"
MAX_SCAN_SESSIONS = 32


class ScanText(BaseModel):
    text: str


class FramesRequest(BaseModel):
    payload_hex: str
    chunk_size: int | None = None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"status": "error", "message": message}, status_code=status_code)


def create_app(
    config: WalletConfig | None = None,
    *,
    viewer_keys: ViewerKeys | None = None,
    indexer: Any = None,
    ledger: LedgerClient | None = None,
    cache: KeyValueCache | None = None,
) -> FastAPI:
    """Build the service. Clients not passed in are created from ``config`` on startup."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned: list[Any] = []
        if app.state.indexer is None:
            app.state.indexer = IndexerClient.from_config(config)
            owned.append(app.state.indexer)
        if app.state.ledger is None:
            app.state.ledger = SubstrateLedgerClient(config.node_url)
            owned.append(app.state.ledger)
        if app.state.cache is None:
            config.history_cache_dir.mkdir(parents=True, exist_ok=True)
            app.state.cache = FileCache(config.history_cache_dir)
        app.state.reconciler = HistoryReconciler(
            app.state.indexer,
            app.state.ledger,
            viewer_keys=app.state.viewer_keys,
            cache=app.state.cache,
            ss58_prefix=config.ss58_prefix,
            token_decimals=config.token_decimals,
            extrinsic_limit=config.extrinsic_limit,
            transfer_page_size=config.transfer_page_size,
            detail_concurrency=config.detail_concurrency,
        )
        try:
            yield
        finally:
            app.state.reconciler = None
            for client in owned:
                if isinstance(client, IndexerClient):
                    await client.aclose()
                else:
                    await client.close()

    app = FastAPI(title="chainreceipt companion", lifespan=lifespan)
    app.state.config = config
    app.state.viewer_keys = viewer_keys
    app.state.indexer = indexer
    app.state.ledger = ledger
    app.state.cache = cache
    app.state.reconciler = None
    app.state.scan_sessions = {}

    async def load_history(request: Request, address: str, page_size: int | None) -> list[TxHistoryItem] | None:
        try:
            return await request.app.state.reconciler.reconcile(address, page_size=page_size or config.page_size)
        except LedgerQueryError as exc:
            logger.error(f"History query for {address} failed: {exc}")
            return None

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/history/{address}", response_model=None)
    async def history(request: Request, address: str, page_size: int | None = None) -> dict[str, Any] | JSONResponse:
        items = await load_history(request, address, page_size)
        if items is None:
            return _error(HISTORY_UNAVAILABLE, 503)
        return {"status": "ok", "address": address, "transactions": [item.to_dict() for item in items]}

    @app.get("/history/{address}/returns", response_model=None)
    async def returns(request: Request, address: str, page_size: int | None = None) -> dict[str, Any] | JSONResponse:
        items = await load_history(request, address, page_size)
        if items is None:
            return _error(HISTORY_UNAVAILABLE, 503)
        latest = build_latest_map(items)
        return {"status": "ok", "address": address, "latest": {root: entry.to_dict() for root, entry in latest.items()}}

    @app.post("/scan/{session_id}", response_model=None)
    async def scan(request: Request, session_id: str, body: ScanText) -> dict[str, Any] | JSONResponse:
        """Feed one scanned QR text into a scan session."""
        sessions: dict[str, ScanSession] = request.app.state.scan_sessions
        session = sessions.get(session_id)
        if session is None:
            while len(sessions) >= MAX_SCAN_SESSIONS:
                dropped = next(iter(sessions))
                logger.warning(f"Dropping idle scan session {dropped}")
                del sessions[dropped]
            session = sessions[session_id] = ScanSession()
        try:
            session.feed(body.text)
        except FrameError as exc:
            logger.warning(f"Rejected frame for scan session {session_id}: {exc}")
            return _error(str(exc), 400)

        if session.result is None:
            assembler = session.assembler
            return {"status": "pending", "received": assembler.received, "total": assembler.total}
        del sessions[session_id]
        return {"status": "complete", "chunked": session.result.chunked, "call_hex": session.result.call_hex}

    @app.delete("/scan/{session_id}")
    async def reset_scan(request: Request, session_id: str) -> dict[str, str]:
        request.app.state.scan_sessions.pop(session_id, None)
        return {"status": "ok"}

    @app.post("/frames", response_model=None)
    async def frames(body: FramesRequest) -> dict[str, Any] | JSONResponse:
        """Split call data into QR frame texts for display."""
        payload = hex_to_bytes(body.payload_hex) if body.payload_hex else b""
        if payload is None:
            return _error("payload_hex is not hex", 400)
        try:
            chunk_size = config.qr_chunk_size if body.chunk_size is None else body.chunk_size
            chunks = encode_frames(payload, chunk_size)
        except ValueError as exc:
            return _error(str(exc), 400)
        return {"status": "ok", "interval": config.qr_interval, "frames": [frame.to_json() for frame in chunks]}

    return app


def serve(host: str = "127.0.0.1", port: int = 8000, **kwargs: Any) -> None:
    import uvicorn

    uvicorn.run(create_app(**kwargs), host=host, port=port)
