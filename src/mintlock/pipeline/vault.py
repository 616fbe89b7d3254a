# src/mintlock/pipeline/vault.py
"""Time-locked escrow lifecycle: Uninitialized -> Locked -> Released.

The release time is enforced by the on-chain program against the ledger
clock. The checks here read the same clock and refuse early so the caller
gets a clean error without paying for a failed transaction; they never
replace the ledger-side gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from mintlock.amounts import ensure_u64, to_base_units, validate_decimals
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import (
    AlreadyInitialized,
    AlreadyReleased,
    InvalidAmount,
    InvalidConfig,
    LedgerRejected,
    NothingToRelease,
    ReleaseInPast,
    ReleaseTooEarly,
    VaultNotInitialized,
)
from mintlock.ledger.client import LedgerClient, ledger_time, read_vault_state, require_mint, token_balance
from mintlock.ledger.derive import associated_token_address
from mintlock.ledger.instructions import TimelockInitialize, TimelockRelease, transfer_checked
from mintlock.pipeline.provision import ensure_token_account
from mintlock.pipeline.submit import submit_or_reconcile, unique_signers
from mintlock.pipeline.verify import EscrowState, VaultStatus, verify_escrow
from mintlock.structured_logging import log_event

log = logging.getLogger("mintlock.pipeline.vault")


@dataclass(frozen=True)
class DepositReceipt:
    signature: Optional[str]
    amount: int
    vault_balance_before: int
    vault_balance_after: int


@dataclass(frozen=True)
class AllocationPlan:
    """Split of a holder's tokens: part paid out now, part locked until release_at."""

    mint: Pubkey
    immediate_whole: str
    locked_whole: str
    decimals: int
    release_at: int
    source_owner: Pubkey
    destination_owner: Pubkey

    @property
    def immediate_base_units(self) -> int:
        return ensure_u64(to_base_units(self.immediate_whole, self.decimals))

    @property
    def locked_base_units(self) -> int:
        return ensure_u64(to_base_units(self.locked_whole, self.decimals))


@dataclass(frozen=True)
class AllocationResult:
    escrow: EscrowState
    immediate_base_units: int
    immediate_signature: Optional[str]
    deposit: Optional[DepositReceipt]


def _map_program_error(e: LedgerRejected, state: Pubkey) -> Exception:
    details = {"state": str(state), **(e.details or {})}
    name = e.program_error
    if name == "TooEarly":
        return ReleaseTooEarly("release_too_early", "ledger_clock_before_release_at", details)
    if name == "NothingToRelease":
        return NothingToRelease("already_released", "vault_empty", details)
    if name == "AlreadyReleased":
        return AlreadyReleased("already_released", "vault_released", details)
    if name == "ReleaseInPast":
        return ReleaseInPast("release_in_past", "release_at_not_after_ledger_clock", details)
    if name == "AccountAlreadyInUse":
        return AlreadyInitialized("already_initialized", "vault_state_exists", details)
    return e


class VaultController:
    def __init__(self, ledger: LedgerClient, payer: Keypair, program_id: Pubkey) -> None:
        self.ledger = ledger
        self.payer = payer
        self.program_id = program_id

    def observe(self, mint: Pubkey, destination_owner: Pubkey) -> EscrowState:
        return verify_escrow(self.ledger, self.program_id, mint, destination_owner)

    def _refresh(self, escrow: EscrowState) -> EscrowState:
        return self.observe(escrow.mint, escrow.destination_owner)

    # ---- initialize ----

    def initialize(self, mint: Pubkey, destination_owner: Pubkey, release_at: int) -> EscrowState:
        typed = TimelockInitialize(
            program_id=self.program_id,
            payer=self.payer.pubkey,
            mint=mint,
            destination=destination_owner,
            release_at=release_at,
        )
        existing = read_vault_state(self.ledger, typed.state, self.program_id)
        if existing is not None:
            raise AlreadyInitialized(
                "already_initialized",
                "vault_state_exists",
                {"state": str(typed.state), "release_at": existing.release_at, "released": existing.released},
            )
        require_mint(self.ledger, mint)
        now = ledger_time(self.ledger)
        if release_at <= now:
            raise ReleaseInPast("release_in_past", "release_at_not_after_ledger_clock", {"release_at": release_at, "ledger_time": now})

        vault_ata = ensure_token_account(self.ledger, self.payer, typed.vault_authority, mint)

        def landed() -> bool:
            rec = read_vault_state(self.ledger, typed.state, self.program_id)
            return rec is not None and rec.mint == mint and rec.destination == destination_owner and rec.release_at == release_at

        try:
            submit_or_reconcile(
                self.ledger,
                [typed.instruction()],
                [self.payer],
                landed=landed,
                logger=log,
                action="vault_initialize",
                state=str(typed.state),
                vault_token_account=str(vault_ata),
                release_at=release_at,
            )
        except LedgerRejected as e:
            raise _map_program_error(e, typed.state) from e
        return self.observe(mint, destination_owner)

    # ---- deposit ----

    def deposit(self, escrow: EscrowState, amount_base_units: int, source: Keypair) -> DepositReceipt:
        """Move tokens from `source`'s token account into a Locked vault. Not idempotent."""
        amount = ensure_u64(amount_base_units)
        if amount == 0:
            raise InvalidAmount("invalid_amount", "deposit_must_be_positive", {"amount": "0"})

        current = self._refresh(escrow)
        if current.status == VaultStatus.UNINITIALIZED:
            raise VaultNotInitialized("vault_not_initialized", "no_state_record", {"state": str(current.state_address)})
        if current.status == VaultStatus.RELEASED:
            raise AlreadyReleased("already_released", "vault_released", {"state": str(current.state_address)})

        mint = require_mint(self.ledger, current.mint)
        source_ata = associated_token_address(source.pubkey, current.mint)
        available = token_balance(self.ledger, source_ata)
        if available < amount:
            raise InvalidAmount(
                "invalid_amount",
                "insufficient_source_balance",
                {"source": str(source_ata), "available": str(available), "amount": str(amount)},
            )

        before = token_balance(self.ledger, current.vault_token_account)
        ix = transfer_checked(
            source=source_ata,
            mint=current.mint,
            destination=current.vault_token_account,
            owner=source.pubkey,
            amount=amount,
            decimals=validate_decimals(mint.decimals),
        )
        sig = submit_or_reconcile(
            self.ledger,
            [ix],
            unique_signers(self.payer, source),
            landed=lambda: token_balance(self.ledger, current.vault_token_account) == before + amount,
            logger=log,
            action="vault_deposit",
            state=str(current.state_address),
            amount=str(amount),
        )
        after = token_balance(self.ledger, current.vault_token_account)
        return DepositReceipt(signature=sig, amount=amount, vault_balance_before=before, vault_balance_after=after)

    # ---- release ----

    def release(self, escrow: EscrowState, caller: Optional[Keypair] = None) -> int:
        """Move the whole vault balance to the destination. Returns base units moved."""
        record = read_vault_state(self.ledger, escrow.state_address, self.program_id)
        if record is None:
            raise VaultNotInitialized("vault_not_initialized", "no_state_record", {"state": str(escrow.state_address)})
        if record.released:
            raise AlreadyReleased("already_released", "vault_released", {"state": str(escrow.state_address)})

        now = ledger_time(self.ledger)
        if now < record.release_at:
            raise ReleaseTooEarly(
                "release_too_early",
                "ledger_clock_before_release_at",
                {"release_at": record.release_at, "ledger_time": now, "remaining_s": record.release_at - now},
            )

        balance = token_balance(self.ledger, escrow.vault_token_account)
        if balance == 0:
            raise NothingToRelease("already_released", "vault_empty", {"state": str(escrow.state_address)})

        dest_ata = ensure_token_account(self.ledger, self.payer, record.destination, record.mint)
        signer = caller or self.payer
        typed = TimelockRelease(program_id=self.program_id, caller=signer.pubkey, mint=record.mint, destination=record.destination)

        def landed() -> bool:
            rec = read_vault_state(self.ledger, escrow.state_address, self.program_id)
            return rec is not None and rec.released

        try:
            submit_or_reconcile(
                self.ledger,
                [typed.instruction()],
                unique_signers(self.payer, signer),
                landed=landed,
                logger=log,
                action="vault_release",
                state=str(escrow.state_address),
                amount=str(balance),
                destination_token_account=str(dest_ata),
            )
        except LedgerRejected as e:
            raise _map_program_error(e, escrow.state_address) from e
        return balance

    # ---- allocate and lock ----

    def lock_allocation(self, plan: AllocationPlan, source: Keypair) -> AllocationResult:
        """Pay out the immediate part, then lock the rest in a fresh vault.

        The vault must not exist yet; nothing is transferred if it does.
        """
        if source.pubkey != plan.source_owner:
            raise InvalidConfig(
                "invalid_config",
                "source_signer_mismatch",
                {"plan_source": str(plan.source_owner), "signer": str(source.pubkey)},
            )
        immediate = plan.immediate_base_units
        locked = plan.locked_base_units
        mint_pk = plan.mint

        current = self.observe(mint_pk, plan.destination_owner)
        if current.status != VaultStatus.UNINITIALIZED:
            raise AlreadyInitialized("already_initialized", "vault_state_exists", {"state": str(current.state_address)})
        now = ledger_time(self.ledger)
        if plan.release_at <= now:
            raise ReleaseInPast(
                "release_in_past", "release_at_not_after_ledger_clock", {"release_at": plan.release_at, "ledger_time": now}
            )

        mint = require_mint(self.ledger, mint_pk)
        if mint.decimals != plan.decimals:
            raise InvalidAmount(
                "invalid_decimals", "plan_decimals_mismatch", {"expected": mint.decimals, "plan": plan.decimals}
            )
        source_ata = associated_token_address(source.pubkey, mint_pk)
        available = token_balance(self.ledger, source_ata)
        moving = immediate if plan.source_owner != plan.destination_owner else 0
        if available < moving + locked:
            raise InvalidAmount(
                "invalid_amount",
                "insufficient_source_balance",
                {"source": str(source_ata), "available": str(available), "required": str(moving + locked)},
            )

        immediate_sig: Optional[str] = None
        if immediate > 0 and plan.source_owner != plan.destination_owner:
            dest_ata = ensure_token_account(self.ledger, self.payer, plan.destination_owner, mint_pk)
            before = token_balance(self.ledger, dest_ata)
            ix = transfer_checked(
                source=source_ata, mint=mint_pk, destination=dest_ata, owner=source.pubkey, amount=immediate, decimals=mint.decimals
            )
            immediate_sig = submit_or_reconcile(
                self.ledger,
                [ix],
                unique_signers(self.payer, source),
                landed=lambda: token_balance(self.ledger, dest_ata) == before + immediate,
                logger=log,
                action="allocation_immediate",
                amount=str(immediate),
                destination_token_account=str(dest_ata),
            )
        elif immediate > 0:
            log_event(log, "allocation_immediate_skipped", reason="source_is_destination", amount=str(immediate))

        escrow = self.initialize(mint_pk, plan.destination_owner, plan.release_at)
        receipt = self.deposit(escrow, locked, source) if locked > 0 else None
        return AllocationResult(
            escrow=self._refresh(escrow),
            immediate_base_units=immediate,
            immediate_signature=immediate_sig,
            deposit=receipt,
        )
