"""Direct ledger-node access by block reference.

The reconciler only needs one operation, ``get_block``, to recover the full
call structure of a transfer the indexer summarized. ``SubstrateLedgerClient``
talks to a node over websocket using the optional ``substrate-interface``
package; ``InMemoryLedgerClient`` serves prepared blocks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Protocol

from chainreceipt.runtime import get_logger

logger = get_logger(__name__)

BlockRef = int | str


class LedgerClientError(Exception):
    """The ledger node could not be reached or did not return the block."""


@dataclass(frozen=True)
class LedgerCall:
    """One decoded call. Batch calls carry inner LedgerCalls in ``args["calls"]``."""

    section: str
    method: str
    args: Mapping[str, Any] = field(default_factory=dict)
    hash: str | None = None
    signer: str | None = None


@dataclass(frozen=True)
class Block:
    block_hash: str
    extrinsics: Sequence[LedgerCall | None] = ()

    def find(self, extrinsic_hash: str) -> LedgerCall | None:
        wanted = extrinsic_hash.lower()
        for call in self.extrinsics:
            if call is not None and call.hash and call.hash.lower() == wanted:
                return call
        return None


class LedgerClient(Protocol):
    async def get_block(self, block_ref: BlockRef) -> Block: ...


def _is_block_number(block_ref: BlockRef) -> bool:
    return isinstance(block_ref, int) or block_ref.isdigit()


def _call_from_substrate(call: Mapping[str, Any], *, hash: str | None = None, signer: str | None = None) -> LedgerCall:
    args: dict[str, Any] = {}
    for arg in call.get("call_args") or []:
        name = arg.get("name")
        value = arg.get("value")
        if name == "calls" and isinstance(value, list):
            value = [_call_from_substrate(inner) for inner in value if isinstance(inner, Mapping)]
        args[name] = value
    return LedgerCall(
        section=str(call.get("call_module") or ""),
        method=str(call.get("call_function") or ""),
        args=args,
        hash=hash,
        signer=signer,
    )


def _extrinsic_from_substrate(extrinsic: Any) -> LedgerCall | None:
    value = getattr(extrinsic, "value", extrinsic)
    if not isinstance(value, Mapping) or not isinstance(value.get("call"), Mapping):
        return None
    signer = value.get("address")
    return _call_from_substrate(
        value["call"],
        hash=value.get("extrinsic_hash"),
        signer=signer if isinstance(signer, str) else None,
    )


class SubstrateLedgerClient:
    """Ledger client backed by ``substrateinterface.SubstrateInterface``.

    The library is synchronous; every request runs in a worker thread. Failed
    connects and requests are retried ``retries`` times with a fixed delay.
    """

    def __init__(self, url: str, *, retries: int = 3, retry_delay: float = 1.0) -> None:
        self.url = url
        self.retries = max(retries, 1)
        self.retry_delay = retry_delay
        self._substrate: Any = None

    async def __aenter__(self) -> SubstrateLedgerClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._substrate is not None

    def _open(self) -> Any:
        try:
            from substrateinterface import SubstrateInterface
        except ImportError as exc:
            raise LedgerClientError("substrate-interface is not installed; install chainreceipt[node]") from exc
        return SubstrateInterface(url=self.url)

    async def _with_retries(self, description: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except LedgerClientError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning(f"{description} failed (attempt {attempt}/{self.retries}): {exc}")
                if attempt < self.retries:
                    await asyncio.sleep(self.retry_delay)
        raise LedgerClientError(f"{description} failed after {self.retries} attempts") from last_error

    async def connect(self) -> None:
        if self._substrate is None:
            self._substrate = await self._with_retries(f"connect to {self.url}", self._open)
            logger.info(f"Connected to ledger node {self.url}")

    async def close(self) -> None:
        substrate, self._substrate = self._substrate, None
        if substrate is not None:
            await asyncio.to_thread(substrate.close)

    async def get_block(self, block_ref: BlockRef) -> Block:
        await self.connect()
        if _is_block_number(block_ref):
            kwargs: dict[str, Any] = {"block_number": int(block_ref)}
        else:
            kwargs = {"block_hash": block_ref}
        raw = await self._with_retries(f"get_block({block_ref})", self._substrate.get_block, **kwargs)
        if not raw:
            raise LedgerClientError(f"block {block_ref} not found")
        header = raw.get("header") or {}
        return Block(
            block_hash=str(header.get("hash") or (block_ref if not _is_block_number(block_ref) else "")),
            extrinsics=[_extrinsic_from_substrate(extrinsic) for extrinsic in raw.get("extrinsics") or []],
        )


class InMemoryLedgerClient:
    """Serves prepared blocks by number or hash."""

    def __init__(self) -> None:
        self._blocks: dict[str, Block] = {}
        self.requests: list[BlockRef] = []

    def add_block(self, block: Block, number: int | None = None) -> None:
        self._blocks[block.block_hash.lower()] = block
        if number is not None:
            self._blocks[str(number)] = block

    async def get_block(self, block_ref: BlockRef) -> Block:
        self.requests.append(block_ref)
        block = self._blocks.get(str(block_ref).lower())
        if block is None:
            raise LedgerClientError(f"block {block_ref} not found")
        return block
