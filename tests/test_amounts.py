from __future__ import annotations

import importlib
from decimal import Decimal

import pytest

from mintlock.amounts import U64_MAX, ensure_u64, format_whole_tokens, to_base_units, to_whole_tokens, validate_decimals
from mintlock.errors import InvalidAmount


def test_billion_tokens_at_nine_decimals_is_exact() -> None:
    assert to_base_units("1000000000", 9) == 10**18
    assert to_base_units(" 600000000 ", 9) == 600 * 10**15
    assert to_base_units("0", 0) == 0


def test_large_supplies_stay_exact_past_float_precision() -> None:
    base = to_base_units("1000000000", 18)
    assert base == 10**27
    assert to_whole_tokens(base, 18) == Decimal("1000000000")
    # 10^27 does not fit the ledger's u64 amount.
    with pytest.raises(InvalidAmount) as ei:
        ensure_u64(base)
    assert ei.value.reason == "amount_exceeds_u64"


@pytest.mark.parametrize("bad", ["", "-1", "1.5", "1e9", "0x10", "1 000", "+5", "\u0661\u0662", "\uff15"])
def test_whole_tokens_must_be_plain_non_negative_integers(bad: str) -> None:
    with pytest.raises(InvalidAmount):
        to_base_units(bad, 9)


def test_whole_tokens_rejects_non_strings() -> None:
    with pytest.raises(InvalidAmount):
        to_base_units(1000, 9)  # type: ignore[arg-type]


@pytest.mark.parametrize("bad", [-1, 19, True, 9.0])
def test_decimals_out_of_range_or_wrong_type(bad) -> None:
    with pytest.raises(InvalidAmount) as ei:
        validate_decimals(bad)
    assert ei.value.code == "invalid_decimals"


def test_u64_bounds() -> None:
    assert ensure_u64(0) == 0
    assert ensure_u64(U64_MAX) == U64_MAX
    for bad in (-1, U64_MAX + 1):
        with pytest.raises(InvalidAmount):
            ensure_u64(bad)


def test_display_formatting() -> None:
    assert format_whole_tokens(10**18, 9) == "1,000,000,000"
    assert format_whole_tokens(12_500_000_000, 9) == "12.5"
    assert format_whole_tokens(1, 9) == "0.000000001"
    assert format_whole_tokens(7, 0) == "7"


def test_to_whole_tokens_rejects_negative() -> None:
    with pytest.raises(InvalidAmount):
        to_whole_tokens(-1, 9)


@pytest.mark.parametrize(
    "module",
    [
        "mintlock.amounts",
        "mintlock.ledger.client",
        "mintlock.ledger.derive",
        "mintlock.ledger.instructions",
        "mintlock.ledger.layouts",
        "mintlock.ledger.programs",
        "mintlock.ledger.rpc_schemas",
        "mintlock.ledger.wire",
        "mintlock.pipeline.issuance",
        "mintlock.pipeline.vault",
        "mintlock.pipeline.verify",
    ],
)
def test_module_docstrings_are_attached(module: str) -> None:
    assert importlib.import_module(module).__doc__
