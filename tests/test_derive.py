from __future__ import annotations

import pytest

from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AddressDerivationExhausted
from mintlock.ledger import derive
from mintlock.ledger.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from mintlock.ledger.derive import (
    InvalidSeeds,
    associated_token_address,
    create_program_address,
    derive_escrow_addresses,
    find_program_address,
    is_on_curve,
    metadata_address,
)
from mintlock.testing.keys import deterministic_keypair


def _pk(label: str) -> Pubkey:
    return deterministic_keypair(label=label).pubkey


def test_real_public_keys_are_on_curve() -> None:
    for label in ("a", "b", "c", "payer"):
        assert is_on_curve(_pk(label).raw) is True


def test_small_known_points() -> None:
    # y = 1 is the identity; y = 0 needs sqrt(-1), which exists mod 2^255-19.
    assert is_on_curve(b"\x01" + bytes(31)) is True
    assert is_on_curve(bytes(32)) is True
    assert is_on_curve(b"\x01" * 31) is False  # wrong length


def test_program_addresses_are_off_curve_and_deterministic() -> None:
    program_id = _pk("program")
    mint, dest = _pk("mint"), _pk("dest")

    a = derive_escrow_addresses(program_id, mint, dest)
    b = derive_escrow_addresses(program_id, mint, dest)
    assert a == b

    for addr in (a.state, a.vault_authority, a.vault_token_account, a.destination_token_account):
        assert is_on_curve(addr.raw) is False

    # The bump returned by the search reproduces the same address.
    state, bump = find_program_address([b"vault_state", mint.raw, dest.raw], program_id)
    assert state == a.state and bump == a.state_bump
    assert create_program_address([b"vault_state", mint.raw, dest.raw, bytes([bump])], program_id) == state


def test_distinct_inputs_give_distinct_escrows() -> None:
    program_id = _pk("program")
    mint = _pk("mint")
    a = derive_escrow_addresses(program_id, mint, _pk("dest-1"))
    b = derive_escrow_addresses(program_id, mint, _pk("dest-2"))
    c = derive_escrow_addresses(_pk("program-2"), mint, _pk("dest-1"))
    assert len({a.state, b.state, c.state}) == 3
    assert a.vault_authority != b.vault_authority


def test_associated_token_address_matches_generic_derivation() -> None:
    owner, mint = _pk("owner"), _pk("mint")
    expected, _ = find_program_address([owner.raw, TOKEN_PROGRAM_ID.raw, mint.raw], ASSOCIATED_TOKEN_PROGRAM_ID)
    assert associated_token_address(owner, mint) == expected
    assert associated_token_address(owner, mint) != associated_token_address(mint, owner)


def test_metadata_address_is_per_mint() -> None:
    assert metadata_address(_pk("m1")) != metadata_address(_pk("m2"))
    assert metadata_address(_pk("m1")) == metadata_address(_pk("m1"))


def test_seed_limits() -> None:
    program_id = _pk("program")
    with pytest.raises(InvalidSeeds):
        find_program_address([b"x" * 33], program_id)
    with pytest.raises(InvalidSeeds):
        # The bump takes the last of the 16 seed slots.
        find_program_address([b"s"] * 16, program_id)
    find_program_address([b"s"] * 15, program_id)


def test_exhausted_search_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(derive, "is_on_curve", lambda _b: True)
    with pytest.raises(AddressDerivationExhausted) as ei:
        find_program_address([b"anything"], _pk("program"))
    assert ei.value.reason == "no_off_curve_address"
