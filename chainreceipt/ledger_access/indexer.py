"""Async client for a Subscan-compatible ledger indexer.

Only three endpoints are used:
    POST /api/v2/scan/extrinsics   calls submitted by an account
    POST /api/v2/scan/transfers    value movements touching an account
    POST /api/scan/extrinsic       full call detail for one extrinsic
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

import httpx

from chainreceipt.runtime import get_logger
from chainreceipt.runtime.config import WalletConfig

logger = get_logger(__name__)

EXTRINSICS_PATH = "/api/v2/scan/extrinsics"
TRANSFERS_PATH = "/api/v2/scan/transfers"
EXTRINSIC_DETAIL_PATH = "/api/scan/extrinsic"


class LedgerQueryError(Exception):
    """A list query failed (network, HTTP status or response format)."""


class DetailLookupError(Exception):
    """Fetching the detail of a single extrinsic failed."""


@dataclass(frozen=True)
class ExtrinsicSummary:
    """Simple extrinsic list entry DTO."""

    extrinsic_index: str
    hash: str
    block_timestamp: int = 0
    account_id: str = ""


@dataclass(frozen=True)
class TransferSummary:
    """Simple transfer list entry DTO."""

    hash: str
    sender: str
    receiver: str
    block_timestamp: int = 0
    block_hash: str = ""
    amount: str = "0"
    amount_v2: str | None = None
    extrinsic_index: str | None = None
    remark: str | None = None


@dataclass(frozen=True)
class CallDetail:
    """Full call detail of one extrinsic as the indexer reports it."""

    extrinsic_index: str
    extrinsic_hash: str
    call_module: str
    call_module_function: str
    params: list[dict[str, Any]] = field(default_factory=list)
    account_id: str = ""
    block_timestamp: int = 0
    block_hash: str = ""
    transfer_amount_v2: str | None = None


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _account(entry: Mapping[str, Any], key: str, display_key: str) -> str:
    value = entry.get(key)
    if isinstance(value, str) and value:
        return value
    display = entry.get(display_key)
    if isinstance(display, Mapping):
        return str(display.get("address") or "")
    return ""


def _map_extrinsic(entry: Mapping[str, Any]) -> ExtrinsicSummary:
    return ExtrinsicSummary(
        extrinsic_index=str(entry.get("extrinsic_index") or ""),
        hash=str(entry.get("extrinsic_hash") or entry.get("hash") or ""),
        block_timestamp=_int(entry.get("block_timestamp")),
        account_id=_account(entry, "account_id", "account_display"),
    )


def _map_transfer(entry: Mapping[str, Any]) -> TransferSummary:
    amount_v2 = entry.get("amount_v2")
    remark = entry.get("remark")
    return TransferSummary(
        hash=str(entry.get("hash") or ""),
        sender=_account(entry, "from", "from_account_display"),
        receiver=_account(entry, "to", "to_account_display"),
        block_timestamp=_int(entry.get("block_timestamp")),
        block_hash=str(entry.get("block_hash") or ""),
        amount=str(entry.get("amount") or "0"),
        amount_v2=str(amount_v2) if amount_v2 not in (None, "") else None,
        extrinsic_index=entry.get("extrinsic_index") or None,
        remark=remark if isinstance(remark, str) and remark else None,
    )


def _parse_params(value: Any) -> list[dict[str, Any]]:
    # Some indexer versions return params as a JSON string.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(value, list):
        return []
    return [param for param in value if isinstance(param, dict)]


def _map_detail(data: Mapping[str, Any]) -> CallDetail:
    transfer = data.get("transfer")
    amount_v2 = transfer.get("amount_v2") if isinstance(transfer, Mapping) else None
    return CallDetail(
        extrinsic_index=str(data.get("extrinsic_index") or ""),
        extrinsic_hash=str(data.get("extrinsic_hash") or ""),
        call_module=str(data.get("call_module") or ""),
        call_module_function=str(data.get("call_module_function") or ""),
        params=_parse_params(data.get("params")),
        account_id=_account(data, "account_id", "account_display"),
        block_timestamp=_int(data.get("block_timestamp")),
        block_hash=str(data.get("block_hash") or ""),
        transfer_amount_v2=str(amount_v2) if amount_v2 not in (None, "") else None,
    )


class IndexerClient:
    """Thin async wrapper over the indexer's JSON API.

    The client owns its ``httpx.AsyncClient`` unless one is passed in. Use it as
    an async context manager or call ``aclose()``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: WalletConfig, **kwargs: Any) -> IndexerClient:
        return cls(
            config.indexer_url,
            api_key=config.indexer_api_key,
            timeout=config.request_timeout,
            **kwargs,
        )

    async def __aenter__(self) -> IndexerClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        response = await self._client.post(path, json=body)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise ValueError(f"indexer returned non-JSON response: {response.text[:100]!r}")
        return response.json()

    async def _list(self, path: str, key: str, body: dict[str, Any]) -> list[Mapping[str, Any]]:
        try:
            payload = await self._post(path, body)
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerQueryError(f"{path} failed: {exc}") from exc

        if not isinstance(payload, Mapping):
            raise LedgerQueryError(f"{path} returned {type(payload).__name__}, expected an object")
        data = payload.get("data")
        if not isinstance(data, Mapping):
            return []
        entries = data.get(key)
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise LedgerQueryError(f"{path} returned a non-list '{key}'")
        return [entry for entry in entries if isinstance(entry, Mapping)]

    async def list_extrinsics(self, address: str, page_size: int = 20, page: int = 0) -> list[ExtrinsicSummary]:
        entries = await self._list(EXTRINSICS_PATH, "extrinsics", {"address": address, "row": page_size, "page": page})
        return [_map_extrinsic(entry) for entry in entries]

    async def list_transfers(self, address: str, page_size: int = 50, page: int = 0) -> list[TransferSummary]:
        entries = await self._list(TRANSFERS_PATH, "transfers", {"address": address, "row": page_size, "page": page})
        return [_map_transfer(entry) for entry in entries]

    async def get_extrinsic_detail(self, extrinsic_index: str) -> CallDetail:
        """Fetch full call detail.

        Raises:
            DetailLookupError: on transport errors, bad responses or a non-zero
                indexer ``code``.
        """
        try:
            payload = await self._post(EXTRINSIC_DETAIL_PATH, {"extrinsic_index": extrinsic_index})
        except (httpx.HTTPError, ValueError) as exc:
            raise DetailLookupError(f"detail for {extrinsic_index} failed: {exc}") from exc

        if not isinstance(payload, Mapping) or payload.get("code") != 0:
            message = payload.get("message") if isinstance(payload, Mapping) else None
            raise DetailLookupError(f"detail for {extrinsic_index} rejected: {message or 'unexpected response'}")
        data = payload.get("data")
        if not isinstance(data, Mapping):
            raise DetailLookupError(f"detail for {extrinsic_index} has no data")
        return _map_detail(data)
