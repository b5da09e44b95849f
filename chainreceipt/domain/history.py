"""Reconciled transaction history records."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Literal, cast

from chainreceipt.domain.receipt import Receipt, mapping_is_return
from chainreceipt.receipt.remark import RemarkPayload, Structured, decode_remark, remark_receipt_fields

Direction = Literal["send", "receive"]
Source = Literal["extrinsic", "transfer"]


@dataclass(frozen=True)
class ReceiptRef:
    """The chain-relevant fields of a receipt, typed or still raw JSON."""

    receipt_id: str
    original_receipt_id: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class TxHistoryItem:
    """One wallet-relevant ledger transaction, deduplicated by hash."""

    id: str
    direction: Direction
    counterparty_address: str
    amount: Decimal
    timestamp: int
    block_ref: str
    counterparty_name: str | None = None
    raw_remark: str | None = None
    remark: RemarkPayload | None = None
    decrypted_receipt: Receipt | None = None
    is_return: bool = False
    source: Source = "extrinsic"

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.direction == "send" else self.amount

    def with_receipt(self, receipt: Receipt) -> TxHistoryItem:
        """Attach a decrypted receipt. Attaching the same receipt twice is a no-op."""
        if self.decrypted_receipt == receipt:
            return self
        return replace(self, decrypted_receipt=receipt, is_return=self.is_return or receipt.is_return)

    def receipt_ref(self) -> ReceiptRef | None:
        if self.decrypted_receipt is not None:
            receipt = self.decrypted_receipt
            return ReceiptRef(receipt.receipt_id, receipt.original_receipt_id, receipt.status)
        fields = remark_receipt_fields(self.remark)
        if fields is None:
            return None
        original = fields.get("original_receipt_id")
        status = fields.get("status")
        return ReceiptRef(
            receipt_id=fields["receipt_id"],
            original_receipt_id=original if isinstance(original, str) and original else None,
            status=status if isinstance(status, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "counterparty_address": self.counterparty_address,
            "counterparty_name": self.counterparty_name,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
            "block_ref": self.block_ref,
            "raw_remark": self.raw_remark,
            "decrypted_receipt": self.decrypted_receipt.to_dict() if self.decrypted_receipt else None,
            "is_return": self.is_return,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TxHistoryItem:
        raw_remark = data.get("raw_remark")
        receipt_data = data.get("decrypted_receipt")
        return cls(
            id=str(data["id"]),
            direction=cast(Direction, data["direction"]),
            counterparty_address=str(data.get("counterparty_address") or ""),
            counterparty_name=data.get("counterparty_name"),
            amount=Decimal(str(data.get("amount", "0"))),
            timestamp=int(data.get("timestamp") or 0),
            block_ref=str(data.get("block_ref") or ""),
            raw_remark=raw_remark,
            remark=decode_remark(raw_remark) if raw_remark else None,
            decrypted_receipt=Receipt.from_dict(receipt_data) if receipt_data else None,
            is_return=bool(data.get("is_return", False)),
            source=cast(Source, data.get("source", "extrinsic")),
        )


def remark_is_return(payload: RemarkPayload | None) -> bool:
    """Return detection for a plain-text remark; envelopes never qualify before decryption."""
    if not isinstance(payload, Structured) or not isinstance(payload.value, dict):
        return False
    return mapping_is_return(payload.value)


@dataclass(frozen=True)
class ReturnChainEntry:
    """Most recent receipt seen for one root receipt."""

    root_receipt_id: str
    latest_receipt_id: str
    latest_timestamp: int
    latest_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_receipt_id": self.root_receipt_id,
            "latest_receipt_id": self.latest_receipt_id,
            "latest_timestamp": self.latest_timestamp,
            "latest_status": self.latest_status,
        }
