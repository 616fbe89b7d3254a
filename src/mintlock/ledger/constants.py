# src/mintlock/ledger/constants.py
from __future__ import annotations

from typing import Final

from mintlock.crypto.pubkey import Pubkey

SYSTEM_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
METADATA_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

SYSVAR_RENT_ID: Final[Pubkey] = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_CLOCK_ID: Final[Pubkey] = Pubkey.from_string("SysvarC1ock11111111111111111111111111111111")
SYSVAR_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string("Sysvar1111111111111111111111111111111111111")

# Seed tags shared with the on-chain timelock program.
VAULT_STATE_SEED: Final[bytes] = b"vault_state"
VAULT_AUTH_SEED: Final[bytes] = b"vault_auth"
METADATA_SEED: Final[bytes] = b"metadata"

PDA_MARKER: Final[bytes] = b"ProgramDerivedAddress"
MAX_SEEDS: Final[int] = 16
MAX_SEED_LEN: Final[int] = 32

# Account sizes.
MINT_ACCOUNT_LEN: Final[int] = 82
TOKEN_ACCOUNT_LEN: Final[int] = 165
VAULT_STATE_LEN: Final[int] = 8 + 32 + 32 + 8 + 1 + 1 + 1

# Commitment levels, weakest first.
COMMITMENTS: Final[tuple[str, ...]] = ("processed", "confirmed", "finalized")
