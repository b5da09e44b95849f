"""Data models for on-chain purchase and return receipts.

Receipts travel as JSON (inside an encrypted envelope or a plain remark). The
dataclasses here are the typed view of that JSON; ``from_dict``/``to_dict`` are
the only places that know the wire field names.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal, cast

from chainreceipt.util.codec import dumps_json, loads_json, normalize_hex_prefix

ReceiptStatus = Literal["issuer", "partial_return", "returned"]
RECEIPT_STATUSES: tuple[str, ...] = ("issuer", "partial_return", "returned")
RETURN_STATUSES: frozenset[str] = frozenset({"partial_return", "returned"})

DEFAULT_TAX_RATE = Decimal("0.10")
CENT = Decimal("0.01")


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Convert a JSON number (or numeric string) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise TypeError(f"{name} must be a number, got {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return int(value)
    raise TypeError(f"{name} must be an integer, got {value!r}")


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{key} must be an object")
    return value


def generate_receipt_id(now_ms: int | None = None) -> str:
    """Receipt id in the app's format: a fixed UUID prefix plus hex milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"550e8400-e29b-41d4-a716-{now_ms:x}"


@dataclass(frozen=True)
class Merchant:
    name: str = ""
    business_id: str = ""
    address: str = ""
    logo_url: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Merchant:
        return cls(
            name=str(data.get("name") or ""),
            business_id=str(data.get("businessId") or ""),
            address=str(data.get("address") or ""),
            logo_url=data.get("logoUrl") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "businessId": self.business_id, "address": self.address}
        if self.logo_url:
            out["logoUrl"] = self.logo_url
        return out


@dataclass(frozen=True)
class Sender:
    address: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Sender:
        return cls(address=str(data.get("address") or ""))

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address}


@dataclass(frozen=True)
class ReceiptItem:
    """A single line item on a receipt."""

    id: str
    name: str
    qty: int
    price: Decimal
    discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    returnable: bool = False
    returned_qty: int = 0

    @property
    def remaining_qty(self) -> int:
        return max(self.qty - self.returned_qty, 0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReceiptItem:
        if not isinstance(data, Mapping):
            raise TypeError("receipt item must be an object")
        if "id" not in data:
            raise ValueError("receipt item is missing 'id'")
        price = to_decimal(data.get("price", 0), "price")
        qty = _to_int(data.get("qty", 0), "qty")
        total = data.get("total")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            qty=qty,
            price=price,
            discount=to_decimal(data.get("discount") or 0, "discount"),
            total=to_decimal(total, "total") if total is not None else price * qty,
            returnable=bool(data.get("returnable", False)),
            returned_qty=_to_int(data.get("returned_qty") or 0, "returned_qty"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "qty": self.qty,
            "price": self.price,
            "discount": self.discount,
            "total": self.total,
            "returnable": self.returnable,
            "returned_qty": self.returned_qty,
        }


@dataclass(frozen=True)
class ReturnsSummary:
    total_returns: int = 0
    returned_amount: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReturnsSummary:
        return cls(
            total_returns=_to_int(data.get("total_returns") or 0, "total_returns"),
            returned_amount=to_decimal(data.get("returned_amount") or 0, "returned_amount"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"total_returns": self.total_returns, "returned_amount": self.returned_amount}


@dataclass(frozen=True)
class Signatures:
    issuer: str = ""
    returner: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Signatures:
        returner = data.get("returner")
        return cls(
            issuer=normalize_hex_prefix(str(data.get("issuer") or "")),
            returner=normalize_hex_prefix(str(returner)) if returner is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"issuer": self.issuer}
        if self.returner is not None:
            out["returner"] = self.returner
        return out


@dataclass(frozen=True)
class ReceiptMetadata:
    chain: str = "polkadot"
    version: str = "1.0"
    network: str = "mainnet"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReceiptMetadata:
        defaults = cls()
        return cls(
            chain=str(data.get("chain") or defaults.chain),
            version=str(data.get("version") or defaults.version),
            network=str(data.get("network") or defaults.network),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"chain": self.chain, "version": self.version, "network": self.network}


_KNOWN_KEYS = frozenset(
    {
        "receipt_id",
        "original_receipt_id",
        "status",
        "merchant",
        "sender",
        "items",
        "currency",
        "subtotal",
        "discount",
        "tax",
        "total",
        "returns",
        "signatures",
        "metadata",
    }
)


@dataclass(frozen=True)
class Receipt:
    """A purchase or return receipt. Never mutated; a return is a new Receipt."""

    receipt_id: str
    status: ReceiptStatus = "issuer"
    merchant: Merchant = field(default_factory=Merchant)
    sender: Sender = field(default_factory=Sender)
    items: tuple[ReceiptItem, ...] = ()
    currency: str = "USD"
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    returns: ReturnsSummary = field(default_factory=ReturnsSummary)
    signatures: Signatures = field(default_factory=Signatures)
    metadata: ReceiptMetadata = field(default_factory=ReceiptMetadata)
    original_receipt_id: str | None = None
    # Unknown top-level keys, re-emitted unchanged by to_dict()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_return(self) -> bool:
        return self.status in RETURN_STATUSES or self.returns.total_returns > 0

    @property
    def root_receipt_id(self) -> str:
        return self.original_receipt_id or self.receipt_id

    def item(self, item_id: str) -> ReceiptItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Receipt:
        """Build a Receipt from its JSON object form.

        Raises:
            TypeError, ValueError: if the mapping is not a structurally valid receipt.
        """
        if not isinstance(data, Mapping):
            raise TypeError("receipt must be a JSON object")
        receipt_id = data.get("receipt_id")
        if not isinstance(receipt_id, str) or not receipt_id:
            raise ValueError("receipt is missing 'receipt_id'")
        status = data.get("status") or "issuer"
        if status not in RECEIPT_STATUSES:
            raise ValueError(f"unknown receipt status {status!r}")
        items = data.get("items") or []
        if not isinstance(items, list):
            raise TypeError("items must be a list")
        original = data.get("original_receipt_id") or None

        return cls(
            receipt_id=receipt_id,
            status=cast(ReceiptStatus, status),
            merchant=Merchant.from_dict(_section(data, "merchant")),
            sender=Sender.from_dict(_section(data, "sender")),
            items=tuple(ReceiptItem.from_dict(item) for item in items),
            currency=str(data.get("currency") or "USD"),
            subtotal=to_decimal(data.get("subtotal") or 0, "subtotal"),
            discount=to_decimal(data.get("discount") or 0, "discount"),
            tax=to_decimal(data.get("tax") or 0, "tax"),
            total=to_decimal(data.get("total") or 0, "total"),
            returns=ReturnsSummary.from_dict(_section(data, "returns")),
            signatures=Signatures.from_dict(_section(data, "signatures")),
            metadata=ReceiptMetadata.from_dict(_section(data, "metadata")),
            original_receipt_id=str(original) if original is not None else None,
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON object form. Money values stay Decimal; use receipt_to_json for text."""
        out: dict[str, Any] = {"receipt_id": self.receipt_id}
        if self.original_receipt_id is not None:
            out["original_receipt_id"] = self.original_receipt_id
        out.update(
            {
                "status": self.status,
                "signatures": self.signatures.to_dict(),
                "merchant": self.merchant.to_dict(),
                "sender": self.sender.to_dict(),
                "items": [item.to_dict() for item in self.items],
                "currency": self.currency,
                "subtotal": self.subtotal,
                "discount": self.discount,
                "tax": self.tax,
                "total": self.total,
                "returns": self.returns.to_dict(),
                "metadata": self.metadata.to_dict(),
            }
        )
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return out


def receipt_to_json(receipt: Receipt) -> str:
    return dumps_json(receipt.to_dict())


def receipt_from_json(text: str | bytes) -> Receipt:
    return Receipt.from_dict(loads_json(text))


def mapping_is_return(data: Mapping[str, Any]) -> bool:
    """Return-detection rule for receipt-shaped JSON that has not been typed yet."""
    if data.get("status") in RETURN_STATUSES:
        return True
    returns = data.get("returns")
    if isinstance(returns, Mapping):
        total_returns = returns.get("total_returns")
        if isinstance(total_returns, (int, float, Decimal)) and not isinstance(total_returns, bool):
            return total_returns > 0
    return False


@dataclass(frozen=True)
class CartLine:
    """One product line handed to issue_receipt()."""

    id: str
    name: str
    qty: int
    price: Decimal
    returnable: bool = True


def issue_receipt(
    merchant: Merchant,
    sender: Sender,
    lines: list[CartLine],
    *,
    receipt_id: str | None = None,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    currency: str = "USD",
    metadata: ReceiptMetadata | None = None,
) -> Receipt:
    """Build a fresh ``issuer`` receipt from cart lines."""
    if not lines:
        raise ValueError("cannot issue a receipt without items")
    items = []
    for line in lines:
        if line.qty <= 0:
            raise ValueError(f"item {line.id!r} must have a positive quantity")
        items.append(
            ReceiptItem(
                id=line.id,
                name=line.name,
                qty=line.qty,
                price=line.price,
                total=line.price * line.qty,
                returnable=line.returnable,
            )
        )
    subtotal = sum((item.total for item in items), Decimal("0"))
    discount = Decimal("0")
    tax = round_money(subtotal * tax_rate)
    return Receipt(
        receipt_id=receipt_id or generate_receipt_id(),
        status="issuer",
        merchant=merchant,
        sender=sender,
        items=tuple(items),
        currency=currency,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=round_money(subtotal + tax - discount),
        metadata=metadata or ReceiptMetadata(),
    )


def build_return_receipt(
    receipt: Receipt,
    returned: Mapping[str, int],
    *,
    receipt_id: str | None = None,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
) -> Receipt:
    """Create the return receipt that follows ``receipt`` in its chain.

    Args:
        receipt: The latest receipt in the chain (original or previous return).
        returned: Units to return in this operation, keyed by item id.
        receipt_id: Id for the new receipt. Generated when omitted.
        tax_rate: Tax rate applied to remaining and refunded subtotals.

    Raises:
        ValueError: for unknown or non-returnable items, quantities beyond what
            remains, or an empty return.
    """
    requested = {item_id: qty for item_id, qty in returned.items() if qty}
    if not requested:
        raise ValueError("nothing selected for return")

    for item_id, qty in requested.items():
        item = receipt.item(item_id)
        if item is None:
            raise ValueError(f"unknown item {item_id!r}")
        if not item.returnable:
            raise ValueError(f"item {item_id!r} is not returnable")
        if qty < 0 or qty > item.remaining_qty:
            raise ValueError(f"cannot return {qty} of {item_id!r}; {item.remaining_qty} remaining")

    items = tuple(replace(item, returned_qty=item.returned_qty + requested.get(item.id, 0)) for item in receipt.items)

    subtotal = sum((item.price * item.remaining_qty for item in items), Decimal("0"))
    tax = round_money(subtotal * tax_rate)
    prices = {item.id: item.price for item in receipt.items}
    refund_subtotal = sum((prices[item_id] * qty for item_id, qty in requested.items()), Decimal("0"))

    returnable = [item for item in items if item.returnable]
    fully_returned = all(item.returned_qty >= item.qty for item in returnable)

    return Receipt(
        receipt_id=receipt_id or generate_receipt_id(),
        original_receipt_id=receipt.root_receipt_id,
        status="returned" if fully_returned else "partial_return",
        merchant=receipt.merchant,
        sender=receipt.sender,
        items=items,
        currency=receipt.currency,
        subtotal=subtotal,
        discount=receipt.discount,
        tax=tax,
        total=round_money(subtotal + tax),
        returns=ReturnsSummary(
            total_returns=sum(requested.values()),
            returned_amount=round_money(refund_subtotal * (1 + tax_rate)),
        ),
        signatures=Signatures(issuer="", returner=""),
        metadata=receipt.metadata,
    )
