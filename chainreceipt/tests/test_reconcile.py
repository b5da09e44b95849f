"""Tests for history reconciliation across the extrinsics and transfers views."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from chainreceipt.application.history import reconcile as reconcile_module
from chainreceipt.application.history.reconcile import (
    HistoryReconciler,
    decrypted_receipt_key,
    history_key,
    history_summary,
    load_cached_history,
    same_account,
)
from chainreceipt.domain.history import TxHistoryItem
from chainreceipt.ledger_access.indexer import CallDetail, ExtrinsicSummary, LedgerQueryError
from chainreceipt.ledger_access.node import InMemoryLedgerClient
from chainreceipt.receipt.keys import ViewerKeys
from chainreceipt.receipt.remark import Opaque
from chainreceipt.runtime.cache import MemoryCache
from chainreceipt.tests.helpers import FakeIndexer, LedgerScenario, indexer_remark_call, indexer_transfer_call


def _reconcile(reconciler: HistoryReconciler, address: str, **kwargs: Any) -> list[TxHistoryItem]:
    return asyncio.run(reconciler.reconcile(address, **kwargs))


def _by_id(history: list[TxHistoryItem]) -> dict[str, TxHistoryItem]:
    return {item.id: item for item in history}


def test_history_merges_both_views_newest_first(scenario: LedgerScenario, buyer: ViewerKeys) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=buyer)

    history = _reconcile(reconciler, scenario.address)

    assert [item.id for item in history] == ["0xbb", "0xee", "0xff", "0xaa"]
    assert len({item.id for item in history}) == len(history)


def test_batch_send_carries_the_decrypted_receipt(
    scenario: LedgerScenario, buyer: ViewerKeys, merchant: ViewerKeys
) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=buyer)

    sent = _by_id(_reconcile(reconciler, scenario.address))["0xaa"]

    assert sent.direction == "send"
    assert sent.counterparty_address == merchant.address()
    assert sent.amount == Decimal("1.5")
    assert sent.signed_amount == Decimal("-1.5")
    assert sent.source == "extrinsic"
    assert sent.decrypted_receipt == scenario.receipt
    assert not sent.is_return


def test_received_transfer_resolved_through_the_node(scenario: LedgerScenario, merchant: ViewerKeys) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger)

    history = _by_id(_reconcile(reconciler, scenario.address))
    refund = history["0xee"]

    assert refund.direction == "receive"
    assert refund.counterparty_address == merchant.address()
    assert refund.amount == Decimal("0.5")
    assert refund.block_ref == "0xb200"
    assert refund.source == "transfer"
    assert refund.is_return
    assert refund.decrypted_receipt is None
    assert set(scenario.ledger.requests) == {200, 300}


def test_unresolvable_transfer_falls_back_to_summary(scenario: LedgerScenario) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger)

    fallback = _by_id(_reconcile(reconciler, scenario.address))["0xff"]

    assert fallback.direction == "receive"
    assert fallback.amount == Decimal("2")
    assert fallback.raw_remark is None
    assert fallback.block_ref == "0xb300"


def test_failed_details_and_other_calls_are_skipped(scenario: LedgerScenario) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger)

    history = _by_id(_reconcile(reconciler, scenario.address))

    assert "0xcc" not in history
    assert "0xdd" not in history
    assert scenario.indexer.detail_requests == ["100-1", "101-1", "102-1", "103-1"]


def test_known_contacts_name_counterparties(scenario: LedgerScenario, merchant: ViewerKeys) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger)

    history = _reconcile(reconciler, scenario.address, known_contacts={merchant.address(): "Corner Shop"})

    named = {item.id for item in history if item.counterparty_name == "Corner Shop"}
    assert named == {"0xaa", "0xbb", "0xee", "0xff"}


def test_extrinsic_limit_caps_detail_lookups(scenario: LedgerScenario) -> None:
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger, extrinsic_limit=1)

    history = _reconcile(reconciler, scenario.address)

    assert scenario.indexer.detail_requests == ["100-1"]
    assert [item.id for item in history] == ["0xee", "0xff", "0xaa"]


def test_list_failure_propagates(scenario: LedgerScenario) -> None:
    scenario.indexer.fail_lists = True
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger)

    with pytest.raises(LedgerQueryError):
        _reconcile(reconciler, scenario.address)


def test_results_are_cached(scenario: LedgerScenario, buyer: ViewerKeys) -> None:
    cache = MemoryCache()
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=buyer, cache=cache)

    history = _reconcile(reconciler, scenario.address)

    assert cache.get(decrypted_receipt_key("0xaa")) is not None
    assert cache.get(history_key(scenario.address)) is not None
    cached = load_cached_history(cache, scenario.address)
    assert cached is not None
    assert [item.id for item in cached] == [item.id for item in history]
    assert _by_id(cached)["0xaa"].decrypted_receipt == scenario.receipt
    assert load_cached_history(cache, "someone-else") is None


def test_cached_receipt_is_used_without_keys(scenario: LedgerScenario, buyer: ViewerKeys) -> None:
    cache = MemoryCache()
    _reconcile(HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=buyer, cache=cache), scenario.address)

    history = _reconcile(HistoryReconciler(scenario.indexer, scenario.ledger, cache=cache), scenario.address)

    assert _by_id(history)["0xaa"].decrypted_receipt == scenario.receipt


def test_corrupt_cache_entries_are_ignored(scenario: LedgerScenario) -> None:
    cache = MemoryCache()
    cache.set(decrypted_receipt_key("0xaa"), "not json")
    cache.set(history_key(scenario.address), "[{}]")

    assert load_cached_history(cache, scenario.address) is None
    history = _reconcile(HistoryReconciler(scenario.indexer, scenario.ledger, cache=cache), scenario.address)
    assert _by_id(history)["0xaa"].decrypted_receipt is None


def test_receipt_for_someone_else_is_tried_once(
    scenario: LedgerScenario, outsider: ViewerKeys, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[str] = []
    real_open = reconcile_module.open_receipt

    def counting_open(envelope: Any, private_key: Any) -> Any:
        calls.append("open")
        return real_open(envelope, private_key)

    monkeypatch.setattr(reconcile_module, "open_receipt", counting_open)
    reconciler = HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=outsider)

    first = _reconcile(reconciler, scenario.address)
    second = _reconcile(reconciler, scenario.address)

    assert _by_id(first)["0xaa"].decrypted_receipt is None
    assert _by_id(second)["0xaa"].decrypted_receipt is None
    assert calls == ["open"]


def test_history_summary(scenario: LedgerScenario, buyer: ViewerKeys) -> None:
    history = _reconcile(HistoryReconciler(scenario.indexer, scenario.ledger, viewer_keys=buyer), scenario.address)

    assert history_summary(history) == {"transactions": 4, "with_receipt": 1, "returns": 1}


def test_same_account_ignores_address_prefix(buyer: ViewerKeys, merchant: ViewerKeys) -> None:
    assert same_account(buyer.address(0), buyer.address(42))
    assert not same_account(buyer.address(), merchant.address())
    assert not same_account("", buyer.address())
    assert same_account("not-an-address", "not-an-address")


def test_deeply_nested_remark_is_kept_as_text(buyer: ViewerKeys, merchant: ViewerKeys) -> None:
    nested = "[" * 100_000
    indexer = FakeIndexer(
        extrinsics=[ExtrinsicSummary("100-1", "0xaa", 1000, buyer.address())],
        details={
            "100-1": CallDetail(
                extrinsic_index="100-1",
                extrinsic_hash="0xaa",
                call_module="utility",
                call_module_function="batch_all",
                params=[
                    {"name": "calls", "value": [indexer_transfer_call(merchant, 10_000_000_000), indexer_remark_call(nested)]}
                ],
                account_id=buyer.address(),
                block_timestamp=1000,
            )
        },
    )
    reconciler = HistoryReconciler(indexer, InMemoryLedgerClient(), viewer_keys=buyer, cache=MemoryCache())

    history = _reconcile(reconciler, buyer.address())

    assert len(history) == 1
    assert history[0].raw_remark == nested
    assert history[0].remark == Opaque(nested)
    assert history[0].decrypted_receipt is None
