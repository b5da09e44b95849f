"""Tests for the receipt data model and return arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from chainreceipt.domain.receipt import (
    CartLine,
    Merchant,
    Receipt,
    Sender,
    build_return_receipt,
    generate_receipt_id,
    issue_receipt,
    mapping_is_return,
    receipt_from_json,
    receipt_to_json,
)


def test_issue_receipt_totals(receipt: Receipt) -> None:
    assert receipt.status == "issuer"
    assert receipt.subtotal == Decimal("19.00")
    assert receipt.tax == Decimal("1.90")
    assert receipt.total == Decimal("20.90")
    assert [item.total for item in receipt.items] == [Decimal("7.00"), Decimal("12.00")]
    assert receipt.root_receipt_id == "r1"
    assert not receipt.is_return


def test_issue_receipt_rounds_tax_half_up() -> None:
    receipt = issue_receipt(Merchant(), Sender(), [CartLine(id="a", name="A", qty=1, price=Decimal("0.05"))])

    assert receipt.tax == Decimal("0.01")
    assert receipt.total == Decimal("0.06")


def test_issue_receipt_rejects_empty_or_negative_lines() -> None:
    with pytest.raises(ValueError):
        issue_receipt(Merchant(), Sender(), [])
    with pytest.raises(ValueError):
        issue_receipt(Merchant(), Sender(), [CartLine(id="a", name="A", qty=0, price=Decimal("1"))])


def test_partial_then_full_return(receipt: Receipt) -> None:
    partial = build_return_receipt(receipt, {"sku-1": 1}, receipt_id="r2")

    assert partial.status == "partial_return"
    assert partial.original_receipt_id == "r1"
    assert partial.item("sku-1") is not None and partial.item("sku-1").returned_qty == 1
    assert partial.subtotal == Decimal("15.50")
    assert partial.tax == Decimal("1.55")
    assert partial.total == Decimal("17.05")
    assert partial.returns.total_returns == 1
    assert partial.returns.returned_amount == Decimal("3.85")
    assert partial.is_return

    final = build_return_receipt(partial, {"sku-1": 1}, receipt_id="r3")

    assert final.status == "returned"
    assert final.original_receipt_id == "r1"
    assert final.subtotal == Decimal("12.00")
    assert final.total == Decimal("13.20")
    assert receipt.item("sku-1").returned_qty == 0


@pytest.mark.parametrize(
    "returned",
    [{}, {"sku-1": 0}, {"missing": 1}, {"sku-2": 1}, {"sku-1": 3}, {"sku-1": -1}],
)
def test_invalid_returns_are_rejected(receipt: Receipt, returned: dict[str, int]) -> None:
    with pytest.raises(ValueError):
        build_return_receipt(receipt, returned)


def test_json_form_keeps_unknown_fields(receipt: Receipt) -> None:
    data = receipt.to_dict()
    data["loyalty"] = {"points": 12}

    restored = Receipt.from_dict(data)

    assert restored.extra == {"loyalty": {"points": 12}}
    assert restored.to_dict()["loyalty"] == {"points": 12}
    assert receipt_from_json(receipt_to_json(receipt)) == receipt


def test_json_uses_app_field_names(receipt: Receipt) -> None:
    text = receipt_to_json(receipt)

    assert '"businessId":"B-1"' in text
    assert '"total":20.90' in text
    assert '"receipt_id":"r1"' in text


def test_from_dict_validation() -> None:
    with pytest.raises(ValueError):
        Receipt.from_dict({"status": "issuer"})
    with pytest.raises(ValueError):
        Receipt.from_dict({"receipt_id": "r1", "status": "voided"})
    with pytest.raises(TypeError):
        Receipt.from_dict({"receipt_id": "r1", "items": {"id": "a"}})
    with pytest.raises(TypeError):
        Receipt.from_dict(["r1"])  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        Receipt.from_dict({"receipt_id": "r1", "items": [{"id": "a", "qty": 1, "price": "cheap"}]})


def test_signatures_are_normalized() -> None:
    receipt = Receipt.from_dict({"receipt_id": "r1", "signatures": {"issuer": "0x0xabcd", "returner": "0x0x0x12"}})

    assert receipt.signatures.issuer == "0xabcd"
    assert receipt.signatures.returner == "0x12"


def test_mapping_is_return() -> None:
    assert mapping_is_return({"status": "partial_return"})
    assert mapping_is_return({"status": "issuer", "returns": {"total_returns": 2}})
    assert not mapping_is_return({"status": "issuer", "returns": {"total_returns": 0}})
    assert not mapping_is_return({"returns": {"total_returns": True}})


def test_generate_receipt_id() -> None:
    assert generate_receipt_id(255) == "550e8400-e29b-41d4-a716-ff"
    assert generate_receipt_id().startswith("550e8400-e29b-41d4-a716-")
