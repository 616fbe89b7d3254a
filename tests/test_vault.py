from __future__ import annotations

import pytest

from mintlock.config import IssuanceConfig, MetadataConfig
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import (
    AlreadyInitialized,
    AlreadyReleased,
    InvalidAmount,
    InvalidConfig,
    LedgerConfirmationTimeout,
    LedgerRejected,
    NothingToRelease,
    ReleaseInPast,
    ReleaseTooEarly,
    VaultNotInitialized,
)
from mintlock.ledger.client import read_vault_state, token_balance
from mintlock.ledger.derive import associated_token_address
from mintlock.ledger.instructions import TimelockInitialize, TimelockRelease, transfer_checked
from mintlock.ledger.memory import MemoryLedger
from mintlock.operations import (
    create_fixed_supply_token,
    deposit_to_vault,
    initialize_vault,
    lock_allocation,
    release_vault,
    verify_vault,
)
from mintlock.pipeline.provision import ensure_token_account
from mintlock.pipeline.vault import AllocationPlan
from mintlock.pipeline.verify import VaultStatus
from mintlock.testing.keys import deterministic_keypair

WHOLE = 10**9
DAY = 86_400


def _issue(ledger: MemoryLedger, payer: Keypair) -> Pubkey:
    cfg = IssuanceConfig(
        decimals=9,
        initial_supply="1000000000",
        revoke_freeze_authority=False,
        destination_owner=None,
        metadata=MetadataConfig(name="", symbol="", uri=""),
    )
    return create_fixed_supply_token(ledger, payer, cfg).mint


def _dev() -> Pubkey:
    return deterministic_keypair(label="dev-wallet").pubkey


def test_lock_then_release_after_deadline(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    dev = _dev()
    release_at = ledger.unix_timestamp + 30 * DAY

    escrow = initialize_vault(ledger, payer, program_id, mint, dev, release_at)
    assert escrow.status == VaultStatus.LOCKED
    assert escrow.release_at == release_at
    assert escrow.vault_balance == 0

    receipt = deposit_to_vault(ledger, payer, escrow, 600_000_000 * WHOLE)
    assert receipt.vault_balance_before == 0
    assert receipt.vault_balance_after == 600_000_000 * WHOLE
    assert token_balance(ledger, associated_token_address(payer.pubkey, mint)) == 400_000_000 * WHOLE

    # One second before the deadline the client refuses and nothing moves.
    ledger.set_time(release_at - 1)
    with pytest.raises(ReleaseTooEarly) as ei:
        release_vault(ledger, payer, escrow)
    assert ei.value.details["remaining_s"] == 1
    assert token_balance(ledger, escrow.vault_token_account) == 600_000_000 * WHOLE

    ledger.set_time(release_at)
    moved = release_vault(ledger, payer, escrow)
    assert moved == 600_000_000 * WHOLE
    assert token_balance(ledger, escrow.vault_token_account) == 0
    assert token_balance(ledger, escrow.destination_token_account) == 600_000_000 * WHOLE

    after = verify_vault(ledger, program_id, mint, dev)
    assert after.status == VaultStatus.RELEASED
    assert after.vault_balance == 0


def test_ledger_enforces_deadline_without_client_checks(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    dev = _dev()
    escrow = initialize_vault(ledger, payer, program_id, mint, dev, ledger.unix_timestamp + DAY)
    deposit_to_vault(ledger, payer, escrow, 5 * WHOLE)
    ensure_token_account(ledger, payer, dev, mint)

    ix = TimelockRelease(program_id=program_id, caller=payer.pubkey, mint=mint, destination=dev).instruction()
    with pytest.raises(LedgerRejected) as ei:
        ledger.submit_and_confirm([ix], [payer])
    assert ei.value.program_error == "TooEarly"
    assert ei.value.details["custom"] == 6001
    assert token_balance(ledger, escrow.vault_token_account) == 5 * WHOLE


def test_ledger_rejects_release_time_in_past(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    typed = TimelockInitialize(
        program_id=program_id, payer=payer.pubkey, mint=mint, destination=_dev(), release_at=ledger.unix_timestamp
    )
    with pytest.raises(LedgerRejected) as ei:
        ledger.submit_and_confirm([typed.instruction()], [payer])
    assert ei.value.program_error == "ReleaseInPast"
    assert ei.value.details["custom"] == 6000


def test_initialize_refuses_past_release(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    with pytest.raises(ReleaseInPast):
        initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp - 10)
    assert verify_vault(ledger, program_id, mint, _dev()).status == VaultStatus.UNINITIALIZED


def test_second_initialize_reports_existing_state(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    first = initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + DAY)

    with pytest.raises(AlreadyInitialized) as ei:
        initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + 2 * DAY)
    assert ei.value.details["state"] == str(first.state_address)
    # The stored deadline is untouched.
    rec = read_vault_state(ledger, first.state_address, program_id)
    assert rec.release_at == first.release_at


def test_release_twice_and_empty_vault(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    dev, other = _dev(), deterministic_keypair(label="other-dest").pubkey
    release_at = ledger.unix_timestamp + DAY

    funded = initialize_vault(ledger, payer, program_id, mint, dev, release_at)
    deposit_to_vault(ledger, payer, funded, 1 * WHOLE)
    empty = initialize_vault(ledger, payer, program_id, mint, other, release_at)

    ledger.advance_time(DAY)
    assert release_vault(ledger, payer, funded) == WHOLE
    with pytest.raises(AlreadyReleased):
        release_vault(ledger, payer, funded)

    with pytest.raises(NothingToRelease) as ei:
        release_vault(ledger, payer, empty)
    assert isinstance(ei.value, AlreadyReleased)


def test_release_on_missing_vault(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    escrow = verify_vault(ledger, program_id, mint, _dev())
    with pytest.raises(VaultNotInitialized):
        release_vault(ledger, payer, escrow)
    with pytest.raises(VaultNotInitialized):
        deposit_to_vault(ledger, payer, escrow, WHOLE)


def test_split_deposits_accumulate(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    escrow = initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + DAY)

    deposit_to_vault(ledger, payer, escrow, 100 * WHOLE)
    second = deposit_to_vault(ledger, payer, escrow, 250 * WHOLE)
    assert second.vault_balance_before == 100 * WHOLE
    assert second.vault_balance_after == 350 * WHOLE


def test_deposit_validations(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    escrow = initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + DAY)

    with pytest.raises(InvalidAmount):
        deposit_to_vault(ledger, payer, escrow, 0)
    with pytest.raises(InvalidAmount) as ei:
        deposit_to_vault(ledger, payer, escrow, 10**18 + 1)
    assert ei.value.reason == "insufficient_source_balance"

    ledger.advance_time(DAY)
    deposit_to_vault(ledger, payer, escrow, WHOLE)
    release_vault(ledger, payer, escrow)
    with pytest.raises(AlreadyReleased):
        deposit_to_vault(ledger, payer, escrow, WHOLE)


def test_deposit_timeout_is_reconciled_not_resubmitted(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    escrow = initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + DAY)

    ledger.timeout_next(applied=True)
    receipt = deposit_to_vault(ledger, payer, escrow, 7 * WHOLE)
    assert receipt.signature is None
    assert receipt.vault_balance_after == 7 * WHOLE

    ledger.timeout_next(applied=False)
    with pytest.raises(LedgerConfirmationTimeout):
        deposit_to_vault(ledger, payer, escrow, 3 * WHOLE)
    assert token_balance(ledger, escrow.vault_token_account) == 7 * WHOLE


def test_separate_source_wallet(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    treasury = deterministic_keypair(label="treasury")
    src_ata = ensure_token_account(ledger, payer, treasury.pubkey, mint)
    escrow = initialize_vault(ledger, payer, program_id, mint, _dev(), ledger.unix_timestamp + DAY)

    with pytest.raises(InvalidAmount):
        deposit_to_vault(ledger, payer, escrow, WHOLE, source=treasury)

    fund = transfer_checked(
        source=associated_token_address(payer.pubkey, mint),
        mint=mint,
        destination=src_ata,
        owner=payer.pubkey,
        amount=50 * WHOLE,
        decimals=9,
    )
    ledger.submit_and_confirm([fund], [payer])

    # The payer covers fees; the treasury signs for its own tokens.
    receipt = deposit_to_vault(ledger, payer, escrow, 20 * WHOLE, source=treasury)
    assert receipt.vault_balance_after == 20 * WHOLE
    assert token_balance(ledger, src_ata) == 30 * WHOLE


def _plan(mint: Pubkey, source: Pubkey, dest: Pubkey, release_at: int, *, immediate: str, locked: str) -> AllocationPlan:
    return AllocationPlan(
        mint=mint,
        immediate_whole=immediate,
        locked_whole=locked,
        decimals=9,
        release_at=release_at,
        source_owner=source,
        destination_owner=dest,
    )


def test_lock_allocation_pays_immediate_part_and_locks_rest(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    dev = _dev()
    release_at = ledger.unix_timestamp + 90 * DAY
    plan = _plan(mint, payer.pubkey, dev, release_at, immediate="100000000", locked="600000000")

    result = lock_allocation(ledger, payer, program_id, plan)
    assert result.immediate_base_units == 100_000_000 * WHOLE
    assert result.immediate_signature is not None
    assert result.deposit is not None and result.deposit.amount == 600_000_000 * WHOLE
    assert result.escrow.status == VaultStatus.LOCKED
    assert result.escrow.vault_balance == 600_000_000 * WHOLE
    assert token_balance(ledger, result.escrow.destination_token_account) == 100_000_000 * WHOLE

    ledger.advance_time(90 * DAY)
    release_vault(ledger, payer, result.escrow)
    assert token_balance(ledger, result.escrow.destination_token_account) == 700_000_000 * WHOLE
    assert token_balance(ledger, associated_token_address(payer.pubkey, mint)) == 300_000_000 * WHOLE


def test_lock_allocation_to_self_skips_transfer(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    plan = _plan(mint, payer.pubkey, payer.pubkey, ledger.unix_timestamp + DAY, immediate="10", locked="20")

    result = lock_allocation(ledger, payer, program_id, plan)
    assert result.immediate_signature is None
    assert result.escrow.vault_balance == 20 * WHOLE


def test_lock_allocation_refuses_existing_vault_before_moving_tokens(
    ledger: MemoryLedger, payer: Keypair, program_id: Pubkey
) -> None:
    mint = _issue(ledger, payer)
    dev = _dev()
    initialize_vault(ledger, payer, program_id, mint, dev, ledger.unix_timestamp + DAY)
    plan = _plan(mint, payer.pubkey, dev, ledger.unix_timestamp + DAY, immediate="10", locked="20")

    with pytest.raises(AlreadyInitialized):
        lock_allocation(ledger, payer, program_id, plan)
    assert token_balance(ledger, associated_token_address(payer.pubkey, mint)) == 10**18


def test_lock_allocation_checks(ledger: MemoryLedger, payer: Keypair, program_id: Pubkey) -> None:
    mint = _issue(ledger, payer)
    dev = _dev()
    later = ledger.unix_timestamp + DAY

    with pytest.raises(InvalidConfig):
        lock_allocation(ledger, payer, program_id, _plan(mint, dev, dev, later, immediate="1", locked="1"))
    with pytest.raises(ReleaseInPast):
        lock_allocation(ledger, payer, program_id, _plan(mint, payer.pubkey, dev, ledger.unix_timestamp, immediate="1", locked="1"))
    with pytest.raises(InvalidAmount) as ei:
        lock_allocation(
            ledger, payer, program_id, _plan(mint, payer.pubkey, dev, later, immediate="500000000", locked="500000001")
        )
    assert ei.value.reason == "insufficient_source_balance"
    assert verify_vault(ledger, program_id, mint, dev).status == VaultStatus.UNINITIALIZED
