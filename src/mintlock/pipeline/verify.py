# src/mintlock/pipeline/verify.py
"""Read-only views of issued mints and escrows. Nothing here mutates."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from mintlock.amounts import format_whole_tokens
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.client import LedgerClient, read_metadata, read_vault_state, require_mint, token_balance
from mintlock.ledger.derive import derive_escrow_addresses
from mintlock.ledger.layouts import MetadataRecord, MintDescriptor

Json = Dict[str, Any]

__all__ = [
    "EscrowState",
    "VaultStatus",
    "describe_escrow",
    "describe_mint",
    "read_metadata",
    "verify_escrow",
    "verify_mint",
]


class VaultStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    RELEASED = "released"


@dataclass(frozen=True)
class EscrowState:
    """Observed escrow. Always derived from the ledger, never stored locally."""

    program_id: Pubkey
    mint: Pubkey
    destination_owner: Pubkey
    state_address: Pubkey
    vault_authority: Pubkey
    vault_token_account: Pubkey
    destination_token_account: Pubkey
    status: VaultStatus
    release_at: Optional[int]
    vault_balance: int


def verify_mint(ledger: LedgerClient, mint: Pubkey) -> MintDescriptor:
    return require_mint(ledger, mint)


def verify_escrow(ledger: LedgerClient, program_id: Pubkey, mint: Pubkey, destination_owner: Pubkey) -> EscrowState:
    addrs = derive_escrow_addresses(program_id, mint, destination_owner)
    record = read_vault_state(ledger, addrs.state, program_id)
    if record is None:
        status, release_at = VaultStatus.UNINITIALIZED, None
    else:
        status = VaultStatus.RELEASED if record.released else VaultStatus.LOCKED
        release_at = record.release_at
    return EscrowState(
        program_id=program_id,
        mint=mint,
        destination_owner=destination_owner,
        state_address=addrs.state,
        vault_authority=addrs.vault_authority,
        vault_token_account=addrs.vault_token_account,
        destination_token_account=addrs.destination_token_account,
        status=status,
        release_at=release_at,
        vault_balance=token_balance(ledger, addrs.vault_token_account),
    )


def describe_mint(m: MintDescriptor, metadata: Optional[MetadataRecord] = None) -> Json:
    out: Json = {
        "mint": str(m.address),
        "decimals": m.decimals,
        "supply_base_units": str(m.supply),
        "supply": format_whole_tokens(m.supply, m.decimals),
        "mint_authority": str(m.mint_authority) if m.mint_authority else None,
        "freeze_authority": str(m.freeze_authority) if m.freeze_authority else None,
        "fixed_supply": m.mint_authority is None,
    }
    if metadata is not None:
        out["metadata"] = {
            "name": metadata.name,
            "symbol": metadata.symbol,
            "uri": metadata.uri,
            "update_authority": str(metadata.update_authority),
        }
    return out


def describe_escrow(e: EscrowState, decimals: Optional[int] = None) -> Json:
    out: Json = {
        "program_id": str(e.program_id),
        "mint": str(e.mint),
        "destination_owner": str(e.destination_owner),
        "state": str(e.state_address),
        "vault_authority": str(e.vault_authority),
        "vault_token_account": str(e.vault_token_account),
        "status": e.status.value,
        "release_at": e.release_at,
        "vault_balance_base_units": str(e.vault_balance),
    }
    if decimals is not None:
        out["vault_balance"] = format_whole_tokens(e.vault_balance, decimals)
    return out
