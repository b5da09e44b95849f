"""Tests for transfer call classification."""

from __future__ import annotations

import json
from decimal import Decimal

from chainreceipt.ledger_access.calls import (
    TransferCall,
    classify_indexer_detail,
    classify_ledger_call,
    planck_to_units,
    snake_case,
)
from chainreceipt.ledger_access.indexer import CallDetail
from chainreceipt.ledger_access.node import LedgerCall
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.tests.helpers import indexer_remark_call, indexer_transfer_call, ledger_batch

BUYER = ViewerKeys.from_seed(bytes([1]) * 32)
MERCHANT = ViewerKeys.from_seed(bytes([2]) * 32)


def _batch_detail(calls: object, function: str = "batch_all") -> CallDetail:
    return CallDetail(
        extrinsic_index="10-2",
        extrinsic_hash="0x01",
        call_module="utility",
        call_module_function=function,
        params=[{"name": "calls", "value": calls}],
        account_id=BUYER.address(),
    )


def test_batch_with_transfer_and_remark() -> None:
    detail = _batch_detail([indexer_transfer_call(MERCHANT, 25_000_000_000), indexer_remark_call("0x7b7d")])

    assert classify_indexer_detail(detail) == TransferCall(
        sender=BUYER.address(),
        dest=MERCHANT.address(),
        value_planck=25_000_000_000,
        remark="0x7b7d",
    )


def test_batch_calls_given_as_json_text() -> None:
    detail = _batch_detail(json.dumps([indexer_transfer_call(MERCHANT, 1)]), function="batch")

    transfer = classify_indexer_detail(detail)

    assert transfer is not None
    assert transfer.remark is None
    assert transfer.value_planck == 1


def test_batch_without_transfer_is_ignored() -> None:
    assert classify_indexer_detail(_batch_detail([indexer_remark_call("hello")])) is None


def test_bare_transfer() -> None:
    detail = CallDetail(
        extrinsic_index="11-1",
        extrinsic_hash="0x02",
        call_module="balances",
        call_module_function="transfer_allow_death",
        params=[{"name": "dest", "value": MERCHANT.address()}],
        account_id=BUYER.address(),
        transfer_amount_v2="7",
    )

    assert classify_indexer_detail(detail) == TransferCall(BUYER.address(), MERCHANT.address(), 7)


def test_other_calls_are_not_wallet_relevant() -> None:
    detail = CallDetail("12-1", "0x03", "staking", "bond", params=[{"name": "value", "value": "1"}])

    assert classify_indexer_detail(detail) is None


def test_ledger_batch_call() -> None:
    call = ledger_batch(MERCHANT, 5, "0x7b7d", "0x04")

    assert classify_ledger_call(call) == TransferCall("", MERCHANT.address(), 5, "0x7b7d")


def test_ledger_bare_transfer_and_other_calls() -> None:
    transfer = LedgerCall("Balances", "transferKeepAlive", {"dest": MERCHANT.address(), "value": 9}, signer=BUYER.address())
    remark_only = LedgerCall("Utility", "batchAll", {"calls": [LedgerCall("System", "remarkWithEvent", {"remark": "x"})]})

    assert classify_ledger_call(transfer) == TransferCall(BUYER.address(), MERCHANT.address(), 9)
    assert classify_ledger_call(remark_only) is None
    assert classify_ledger_call(LedgerCall("Timestamp", "set", {"now": 1})) is None


def test_snake_case_and_units() -> None:
    assert snake_case("transferKeepAlive") == "transfer_keep_alive"
    assert snake_case("batchAll") == "batch_all"
    assert snake_case("batch_all") == "batch_all"
    assert planck_to_units(15_000_000_000) == Decimal("1.5")
    assert planck_to_units("123", decimals=2) == Decimal("1.23")
