from __future__ import annotations

from typing import Optional

import pytest

from mintlock.config import IssuanceConfig, MetadataConfig
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AccountNotFound, AccountOwnerMismatch, InvalidConfig
from mintlock.ledger.memory import MemoryLedger
from mintlock.operations import create_fixed_supply_token, read_metadata, update_metadata, verify_mint
from mintlock.pipeline.verify import describe_mint
from mintlock.testing.keys import deterministic_keypair

URI = "https://example.invalid/token.json"


def _issue_with_metadata(ledger: MemoryLedger, payer: Keypair, update_authority: Optional[Pubkey] = None) -> Pubkey:
    md = MetadataConfig(name="Mintlock", symbol="MLK", uri=URI, update_authority=update_authority)
    cfg = IssuanceConfig(
        decimals=9,
        initial_supply="1000000000",
        revoke_freeze_authority=True,
        destination_owner=None,
        metadata=md,
    )
    return create_fixed_supply_token(ledger, payer, cfg).mint


def test_update_after_mint_authority_revoked(ledger: MemoryLedger, payer: Keypair) -> None:
    mint = _issue_with_metadata(ledger, payer)

    rec = update_metadata(ledger, payer, mint, name="Mintlock v2", symbol="MLK2", uri=URI + "?v=2")
    assert (rec.name, rec.symbol, rec.uri) == ("Mintlock v2", "MLK2", URI + "?v=2")
    assert read_metadata(ledger, mint) == rec


def test_unchanged_update_is_a_no_op(ledger: MemoryLedger, payer: Keypair) -> None:
    mint = _issue_with_metadata(ledger, payer)
    n = len(ledger.transactions)
    update_metadata(ledger, payer, mint, name="Mintlock", symbol="MLK", uri=URI)
    assert len(ledger.transactions) == n


def test_update_authority_handover(ledger: MemoryLedger, payer: Keypair) -> None:
    mint = _issue_with_metadata(ledger, payer)
    successor = deterministic_keypair(label="successor")
    ledger.airdrop(successor.pubkey)

    rec = update_metadata(ledger, payer, mint, name="Mintlock", symbol="MLK", uri=URI, new_update_authority=successor.pubkey)
    assert rec.update_authority == successor.pubkey

    with pytest.raises(AccountOwnerMismatch) as ei:
        update_metadata(ledger, payer, mint, name="Nope", symbol="NO", uri=URI)
    assert ei.value.reason == "not_update_authority"

    rec = update_metadata(ledger, successor, mint, name="Handed Over", symbol="MLK", uri=URI)
    assert rec.name == "Handed Over"


def test_separate_update_authority_at_creation(ledger: MemoryLedger, payer: Keypair) -> None:
    admin = deterministic_keypair(label="metadata-admin")
    mint = _issue_with_metadata(ledger, payer, update_authority=admin.pubkey)
    assert read_metadata(ledger, mint).update_authority == admin.pubkey

    with pytest.raises(AccountOwnerMismatch):
        update_metadata(ledger, payer, mint, name="x", symbol="x", uri=URI)


def test_update_without_record(ledger: MemoryLedger, payer: Keypair) -> None:
    cfg = IssuanceConfig(
        decimals=9,
        initial_supply="1",
        revoke_freeze_authority=False,
        destination_owner=None,
        metadata=MetadataConfig(name="", symbol="", uri=""),
    )
    mint = create_fixed_supply_token(ledger, payer, cfg).mint
    with pytest.raises(AccountNotFound) as ei:
        update_metadata(ledger, payer, mint, name="a", symbol="b", uri="c")
    assert ei.value.reason == "metadata_not_found"


def test_overlong_fields_are_config_errors(ledger: MemoryLedger, payer: Keypair) -> None:
    mint = _issue_with_metadata(ledger, payer)
    with pytest.raises(InvalidConfig):
        update_metadata(ledger, payer, mint, name="n" * 33, symbol="MLK", uri=URI)


def test_describe_mint_includes_metadata(ledger: MemoryLedger, payer: Keypair) -> None:
    mint = _issue_with_metadata(ledger, payer)

    out = describe_mint(verify_mint(ledger, mint), read_metadata(ledger, mint))
    assert out["supply"] == "1,000,000,000"
    assert out["supply_base_units"] == str(10**18)
    assert out["fixed_supply"] is True
    assert out["freeze_authority"] is None
    assert out["metadata"]["symbol"] == "MLK"
