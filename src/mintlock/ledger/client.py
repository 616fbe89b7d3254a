# src/mintlock/ledger/client.py
"""Ledger collaborator interface and typed read helpers.

Everything the core needs from the ledger goes through `LedgerClient`.
The helpers below decode raw accounts into the layouts the core reasons
about; they never mutate.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AccountNotFound
from mintlock.ledger.constants import METADATA_PROGRAM_ID, SYSVAR_CLOCK_ID, TOKEN_PROGRAM_ID
from mintlock.ledger.derive import metadata_address
from mintlock.ledger.instructions import Instruction
from mintlock.ledger.layouts import (
    AccountInfo,
    MetadataRecord,
    MintDescriptor,
    TokenAccount,
    VaultStateRecord,
    decode_clock,
    decode_metadata,
    decode_mint,
    decode_token_account,
    decode_vault_state,
)


class LedgerClient(Protocol):
    def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        ...

    def get_balance(self, address: Pubkey) -> int:
        """Native balance in lamports."""
        ...

    def minimum_balance_for_rent_exemption(self, size: int) -> int:
        ...

    def submit_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        """Submit one atomic transaction and block until confirmed.

        The first signer pays fees. Returns the transaction signature.
        Raises LedgerRejected or LedgerConfirmationTimeout.
        """
        ...


def read_mint(ledger: LedgerClient, mint: Pubkey) -> Optional[MintDescriptor]:
    info = ledger.get_account_info(mint)
    if info is None or info.owner != TOKEN_PROGRAM_ID:
        return None
    return decode_mint(mint, info.data)


def require_mint(ledger: LedgerClient, mint: Pubkey) -> MintDescriptor:
    m = read_mint(ledger, mint)
    if m is None or not m.is_initialized:
        raise AccountNotFound("not_found", "mint_not_found", {"mint": str(mint)})
    return m


def read_token_account(ledger: LedgerClient, address: Pubkey) -> Optional[TokenAccount]:
    info = ledger.get_account_info(address)
    if info is None:
        return None
    return decode_token_account(address, info.data)


def token_balance(ledger: LedgerClient, address: Pubkey) -> int:
    acct = read_token_account(ledger, address)
    return acct.amount if acct is not None else 0


def read_vault_state(ledger: LedgerClient, state: Pubkey, program_id: Pubkey) -> Optional[VaultStateRecord]:
    info = ledger.get_account_info(state)
    if info is None:
        return None
    if info.owner != program_id:
        raise AccountNotFound(
            "not_found",
            "state_account_not_owned_by_program",
            {"state": str(state), "owner": str(info.owner), "program_id": str(program_id)},
        )
    return decode_vault_state(info.data)


def read_metadata(ledger: LedgerClient, mint: Pubkey) -> Optional[MetadataRecord]:
    info = ledger.get_account_info(metadata_address(mint))
    if info is None or info.owner != METADATA_PROGRAM_ID:
        return None
    return decode_metadata(info.data)


def ledger_time(ledger: LedgerClient) -> int:
    """Ledger clock (unix seconds) from the clock sysvar, not the local clock."""
    info = ledger.get_account_info(SYSVAR_CLOCK_ID)
    if info is None:
        raise AccountNotFound("not_found", "clock_sysvar_missing", {"address": str(SYSVAR_CLOCK_ID)})
    return decode_clock(info.data).unix_timestamp
