# src/mintlock/ledger/instructions.py
"""Typed instruction builders.

Each builder produces an `Instruction` (program id, ordered account metas,
opaque data). The timelock builders are dataclasses that re-derive their
program addresses at construction time, so an Initialize or Release whose
accounts disagree with the derivation contract can never be built.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from mintlock.amounts import ensure_u64, validate_decimals
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_RENT_ID,
    TOKEN_PROGRAM_ID,
)
from mintlock.ledger.derive import associated_token_address, derive_escrow_addresses, metadata_address
from mintlock.ledger.layouts import MAX_NAME_LEN, MAX_SYMBOL_LEN, MAX_URI_LEN, borsh_string


@dataclass(frozen=True, slots=True)
class AccountMeta:
    pubkey: Pubkey
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True, slots=True)
class Instruction:
    program_id: Pubkey
    accounts: Tuple[AccountMeta, ...]
    data: bytes


def _w(pk: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pk, signer, True)


def _r(pk: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(pk, signer, False)


# ---- System program ----

SYSTEM_CREATE_ACCOUNT = 0


def create_account(*, payer: Pubkey, new_account: Pubkey, lamports: int, space: int, owner: Pubkey) -> Instruction:
    data = struct.pack("<IQQ", SYSTEM_CREATE_ACCOUNT, ensure_u64(lamports), int(space)) + owner.raw
    return Instruction(SYSTEM_PROGRAM_ID, (_w(payer, True), _w(new_account, True)), data)


# ---- Token program ----


class TokenIx:
    SET_AUTHORITY = 6
    MINT_TO = 7
    TRANSFER_CHECKED = 12
    INITIALIZE_MINT2 = 20


class AuthorityType:
    MINT_TOKENS = 0
    FREEZE_ACCOUNT = 1


def _coption_pubkey_tagged(v: Optional[Pubkey]) -> bytes:
    # Instruction encoding uses a one-byte tag, unlike the account layout.
    return b"\x00" if v is None else b"\x01" + v.raw


def initialize_mint2(*, mint: Pubkey, decimals: int, mint_authority: Pubkey, freeze_authority: Optional[Pubkey]) -> Instruction:
    data = (
        bytes([TokenIx.INITIALIZE_MINT2, validate_decimals(decimals)])
        + mint_authority.raw
        + _coption_pubkey_tagged(freeze_authority)
    )
    return Instruction(TOKEN_PROGRAM_ID, (_w(mint),), data)


def mint_to(*, mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    data = struct.pack("<BQ", TokenIx.MINT_TO, ensure_u64(amount))
    return Instruction(TOKEN_PROGRAM_ID, (_w(mint), _w(destination), _r(authority, True)), data)


def set_authority(*, account: Pubkey, current_authority: Pubkey, authority_type: int, new_authority: Optional[Pubkey]) -> Instruction:
    data = bytes([TokenIx.SET_AUTHORITY, int(authority_type)]) + _coption_pubkey_tagged(new_authority)
    return Instruction(TOKEN_PROGRAM_ID, (_w(account), _r(current_authority, True)), data)


def transfer_checked(
    *, source: Pubkey, mint: Pubkey, destination: Pubkey, owner: Pubkey, amount: int, decimals: int
) -> Instruction:
    data = struct.pack("<BQB", TokenIx.TRANSFER_CHECKED, ensure_u64(amount), validate_decimals(decimals))
    return Instruction(TOKEN_PROGRAM_ID, (_w(source), _r(mint), _w(destination), _r(owner, True)), data)


# ---- Associated token program ----

ATA_CREATE_IDEMPOTENT = 1


def create_associated_token_account_idempotent(*, payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    ata = associated_token_address(owner, mint)
    accounts = (
        _w(payer, True),
        _w(ata),
        _r(owner),
        _r(mint),
        _r(SYSTEM_PROGRAM_ID),
        _r(TOKEN_PROGRAM_ID),
    )
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, accounts, bytes([ATA_CREATE_IDEMPOTENT]))


# ---- Token metadata program ----


class MetadataIx:
    UPDATE_METADATA_ACCOUNT_V2 = 15
    CREATE_METADATA_ACCOUNT_V3 = 33


def _check_metadata_fields(name: str, symbol: str, uri: str) -> None:
    for label, v, limit in (("name", name, MAX_NAME_LEN), ("symbol", symbol, MAX_SYMBOL_LEN), ("uri", uri, MAX_URI_LEN)):
        if len(v.encode("utf-8")) > limit:
            raise ValueError(f"metadata {label} longer than {limit} bytes")


def _data_v2(name: str, symbol: str, uri: str) -> bytes:
    _check_metadata_fields(name, symbol, uri)
    # seller_fee_basis_points=0, creators/collection/uses all None
    return borsh_string(name) + borsh_string(symbol) + borsh_string(uri) + struct.pack("<H", 0) + b"\x00\x00\x00"


def create_metadata_account_v3(
    *, mint: Pubkey, mint_authority: Pubkey, payer: Pubkey, update_authority: Pubkey, name: str, symbol: str, uri: str
) -> Instruction:
    data = bytes([MetadataIx.CREATE_METADATA_ACCOUNT_V3]) + _data_v2(name, symbol, uri) + b"\x01" + b"\x00"
    accounts = (
        _w(metadata_address(mint)),
        _r(mint),
        _r(mint_authority, True),
        _w(payer, True),
        _r(update_authority),
        _r(SYSTEM_PROGRAM_ID),
        _r(SYSVAR_RENT_ID),
    )
    return Instruction(METADATA_PROGRAM_ID, accounts, data)


def update_metadata_account_v2(
    *, mint: Pubkey, update_authority: Pubkey, new_update_authority: Pubkey, name: str, symbol: str, uri: str
) -> Instruction:
    data = (
        bytes([MetadataIx.UPDATE_METADATA_ACCOUNT_V2])
        + b"\x01"
        + _data_v2(name, symbol, uri)
        + b"\x01"
        + new_update_authority.raw
        + b"\x00"  # primary_sale_happened: unchanged
        + b"\x01\x01"  # is_mutable: Some(true)
    )
    return Instruction(METADATA_PROGRAM_ID, (_w(metadata_address(mint)), _r(update_authority, True)), data)


# ---- Timelock vault program ----


def anchor_instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


TIMELOCK_INITIALIZE = anchor_instruction_discriminator("initialize")
TIMELOCK_RELEASE = anchor_instruction_discriminator("release")

# Custom error codes returned by the timelock program (anchor offsets from 6000).
TIMELOCK_ERRORS: Dict[int, str] = {
    6000: "ReleaseInPast",
    6001: "TooEarly",
    6002: "AlreadyReleased",
    6003: "NothingToRelease",
}
TIMELOCK_ERROR_CODES: Dict[str, int] = {v: k for k, v in TIMELOCK_ERRORS.items()}


@dataclass(frozen=True)
class TimelockInitialize:
    program_id: Pubkey
    payer: Pubkey
    mint: Pubkey
    destination: Pubkey
    release_at: int
    state: Pubkey = field(init=False)
    vault_authority: Pubkey = field(init=False)
    vault_bump: int = field(init=False)

    def __post_init__(self) -> None:
        if isinstance(self.release_at, bool) or not isinstance(self.release_at, int):
            raise TypeError("release_at must be int unix seconds")
        if not (-(2**63) <= self.release_at < 2**63):
            raise ValueError("release_at does not fit i64")
        addrs = derive_escrow_addresses(self.program_id, self.mint, self.destination)
        object.__setattr__(self, "state", addrs.state)
        object.__setattr__(self, "vault_authority", addrs.vault_authority)
        object.__setattr__(self, "vault_bump", addrs.vault_bump)

    def instruction(self) -> Instruction:
        data = TIMELOCK_INITIALIZE + struct.pack("<qB", self.release_at, self.vault_bump)
        accounts = (
            _w(self.payer, True),
            _r(self.mint),
            _r(self.destination),
            _w(self.state),
            _r(self.vault_authority),
            _r(SYSTEM_PROGRAM_ID),
        )
        return Instruction(self.program_id, accounts, data)


@dataclass(frozen=True)
class TimelockRelease:
    program_id: Pubkey
    caller: Pubkey
    mint: Pubkey
    destination: Pubkey
    state: Pubkey = field(init=False)
    vault_authority: Pubkey = field(init=False)
    vault_token_account: Pubkey = field(init=False)
    destination_token_account: Pubkey = field(init=False)

    def __post_init__(self) -> None:
        addrs = derive_escrow_addresses(self.program_id, self.mint, self.destination)
        object.__setattr__(self, "state", addrs.state)
        object.__setattr__(self, "vault_authority", addrs.vault_authority)
        object.__setattr__(self, "vault_token_account", addrs.vault_token_account)
        object.__setattr__(self, "destination_token_account", addrs.destination_token_account)

    def instruction(self) -> Instruction:
        accounts = (
            _r(self.caller, True),
            _r(self.mint),
            _w(self.state),
            _r(self.vault_authority),
            _w(self.vault_token_account),
            _w(self.destination_token_account),
            _r(TOKEN_PROGRAM_ID),
            _r(ASSOCIATED_TOKEN_PROGRAM_ID),
            _r(SYSTEM_PROGRAM_ID),
        )
        return Instruction(self.program_id, accounts, TIMELOCK_RELEASE)


def signer_keys(instructions: List[Instruction]) -> List[Pubkey]:
    out: List[Pubkey] = []
    for ix in instructions:
        for m in ix.accounts:
            if m.is_signer and m.pubkey not in out:
                out.append(m.pubkey)
    return out
