"""Classification of wallet-relevant calls.

Both ledger views describe the same calls in different shapes. A call is
wallet-relevant when it is a balance transfer, either bare or inside a utility
batch; a ``system.remark`` in the same batch carries the receipt.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from chainreceipt.ledger_access.indexer import CallDetail
from chainreceipt.ledger_access.node import LedgerCall
from chainreceipt.receipt.keys import normalize_account

BATCH_METHODS = frozenset({"batch", "batch_all", "force_batch"})
REMARK_METHODS = frozenset({"remark", "remark_with_event"})

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class TransferCall:
    sender: str
    dest: str
    value_planck: int
    remark: str | None = None


def snake_case(name: str) -> str:
    if "_" in name:
        return name.lower()
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def is_transfer(module: str, function: str) -> bool:
    return module.lower() == "balances" and snake_case(function).startswith("transfer")


def is_remark(module: str, function: str) -> bool:
    return module.lower() == "system" and snake_case(function) in REMARK_METHODS


def is_batch(module: str, function: str) -> bool:
    return module.lower() == "utility" and snake_case(function) in BATCH_METHODS


def planck_to_units(value: int | str, decimals: int = 10) -> Decimal:
    return Decimal(value).scaleb(-decimals)


def _planck(value: Any) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return 0


def _remark_value(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _param(params: Iterable[Mapping[str, Any]], name: str) -> Any:
    for param in params:
        if param.get("name") == name:
            return param.get("value")
    return None


# Indexer shapes


def _indexer_function(call: Mapping[str, Any]) -> str:
    return str(call.get("call_name") or call.get("call_module_function") or "")


def _indexer_batch_calls(params: list[dict[str, Any]]) -> list[Mapping[str, Any]]:
    calls = _param(params, "calls")
    if isinstance(calls, str):
        try:
            calls = json.loads(calls)
        except json.JSONDecodeError:
            return []
    if not isinstance(calls, list):
        return []
    return [call for call in calls if isinstance(call, Mapping)]


def classify_indexer_detail(detail: CallDetail, ss58_prefix: int = 0) -> TransferCall | None:
    """Extract the transfer (and remark) from an indexer call detail, if any."""
    sender = normalize_account(detail.account_id, ss58_prefix)

    if is_batch(detail.call_module, detail.call_module_function):
        transfer: tuple[str, int] | None = None
        remark = None
        for call in _indexer_batch_calls(detail.params):
            module = str(call.get("call_module") or "")
            function = _indexer_function(call)
            params = call.get("params") or []
            if not isinstance(params, list):
                continue
            if is_transfer(module, function):
                transfer = (
                    normalize_account(_param(params, "dest"), ss58_prefix),
                    _planck(_param(params, "value")),
                )
            elif is_remark(module, function):
                remark = _remark_value(_param(params, "remark"))
        if transfer is None:
            return None
        return TransferCall(sender=sender, dest=transfer[0], value_planck=transfer[1], remark=remark)

    if is_transfer(detail.call_module, detail.call_module_function):
        value = _param(detail.params, "value")
        if value is None:
            value = detail.transfer_amount_v2
        return TransferCall(
            sender=sender,
            dest=normalize_account(_param(detail.params, "dest"), ss58_prefix),
            value_planck=_planck(value),
        )
    return None


# Ledger node shapes


def classify_ledger_call(call: LedgerCall, ss58_prefix: int = 0) -> TransferCall | None:
    """Extract the transfer (and remark) from a decoded ledger-node call, if any."""
    sender = normalize_account(call.signer or "", ss58_prefix)

    if is_batch(call.section, call.method):
        transfer: tuple[str, int] | None = None
        remark = None
        for inner in call.args.get("calls") or []:
            if not isinstance(inner, LedgerCall):
                continue
            if is_transfer(inner.section, inner.method):
                transfer = (
                    normalize_account(inner.args.get("dest"), ss58_prefix),
                    _planck(inner.args.get("value")),
                )
            elif is_remark(inner.section, inner.method):
                remark = _remark_value(inner.args.get("remark"))
        if transfer is None:
            return None
        return TransferCall(sender=sender, dest=transfer[0], value_planck=transfer[1], remark=remark)

    if is_transfer(call.section, call.method):
        return TransferCall(
            sender=sender,
            dest=normalize_account(call.args.get("dest"), ss58_prefix),
            value_planck=_planck(call.args.get("value")),
        )
    return None
