# src/mintlock/operations.py
"""Caller-facing operations. Each takes its collaborators explicitly."""

from __future__ import annotations

from typing import Optional

from mintlock.config import IssuanceConfig
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.client import LedgerClient
from mintlock.ledger.layouts import MetadataRecord, MintDescriptor
from mintlock.pipeline import metadata as _metadata
from mintlock.pipeline import verify as _verify
from mintlock.pipeline.issuance import IssuanceResult, IssuancePipeline
from mintlock.pipeline.vault import AllocationPlan, AllocationResult, DepositReceipt, VaultController
from mintlock.pipeline.verify import EscrowState


def create_fixed_supply_token(
    ledger: LedgerClient, payer: Keypair, cfg: IssuanceConfig, *, mint_keypair: Optional[Keypair] = None
) -> IssuanceResult:
    return IssuancePipeline(ledger, payer, cfg, mint_keypair=mint_keypair).run()


def initialize_vault(
    ledger: LedgerClient, payer: Keypair, program_id: Pubkey, mint: Pubkey, destination_owner: Pubkey, release_at: int
) -> EscrowState:
    return VaultController(ledger, payer, program_id).initialize(mint, destination_owner, release_at)


def deposit_to_vault(
    ledger: LedgerClient, payer: Keypair, escrow: EscrowState, amount_base_units: int, source: Optional[Keypair] = None
) -> DepositReceipt:
    return VaultController(ledger, payer, escrow.program_id).deposit(escrow, amount_base_units, source or payer)


def release_vault(ledger: LedgerClient, payer: Keypair, escrow: EscrowState, caller: Optional[Keypair] = None) -> int:
    return VaultController(ledger, payer, escrow.program_id).release(escrow, caller)


def lock_allocation(
    ledger: LedgerClient, payer: Keypair, program_id: Pubkey, plan: AllocationPlan, source: Optional[Keypair] = None
) -> AllocationResult:
    return VaultController(ledger, payer, program_id).lock_allocation(plan, source or payer)


def verify_mint(ledger: LedgerClient, mint: Pubkey) -> MintDescriptor:
    return _verify.verify_mint(ledger, mint)


def verify_vault(ledger: LedgerClient, program_id: Pubkey, mint: Pubkey, destination_owner: Pubkey) -> EscrowState:
    return _verify.verify_escrow(ledger, program_id, mint, destination_owner)


def read_metadata(ledger: LedgerClient, mint: Pubkey) -> Optional[MetadataRecord]:
    return _verify.read_metadata(ledger, mint)


def update_metadata(
    ledger: LedgerClient,
    authority: Keypair,
    mint: Pubkey,
    *,
    name: str,
    symbol: str,
    uri: str,
    new_update_authority: Optional[Pubkey] = None,
) -> MetadataRecord:
    return _metadata.update_metadata(
        ledger, authority, mint, name=name, symbol=symbol, uri=uri, new_update_authority=new_update_authority
    )
