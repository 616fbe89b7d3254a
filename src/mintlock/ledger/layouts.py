# src/mintlock/ledger/layouts.py
"""Binary account layouts for the token, metadata, timelock and clock accounts.

Decoders are shared by every ledger implementation so the core always reads
state the same way. Encoders exist for the in-memory reference ledger.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.constants import MINT_ACCOUNT_LEN, TOKEN_ACCOUNT_LEN, VAULT_STATE_LEN


def anchor_account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


VAULT_STATE_DISCRIMINATOR = anchor_account_discriminator("VaultState")


class LayoutError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class AccountInfo:
    """Raw account as returned by the ledger."""

    lamports: int
    owner: Pubkey
    data: bytes
    executable: bool = False


# ---- COption<Pubkey> ----


def _read_coption_pubkey(data: bytes, offset: int) -> Tuple[Optional[Pubkey], int]:
    (tag,) = struct.unpack_from("<I", data, offset)
    raw = data[offset + 4 : offset + 36]
    if tag == 0:
        return None, offset + 36
    if tag != 1:
        raise LayoutError(f"bad COption tag {tag}")
    return Pubkey(raw), offset + 36


def _write_coption_pubkey(v: Optional[Pubkey]) -> bytes:
    if v is None:
        return struct.pack("<I", 0) + bytes(32)
    return struct.pack("<I", 1) + v.raw


# ---- Mint ----


@dataclass(frozen=True, slots=True)
class MintDescriptor:
    address: Pubkey
    decimals: int
    mint_authority: Optional[Pubkey]
    freeze_authority: Optional[Pubkey]
    supply: int
    is_initialized: bool = True


def decode_mint(address: Pubkey, data: bytes) -> MintDescriptor:
    if len(data) < MINT_ACCOUNT_LEN:
        raise LayoutError(f"mint account too short: {len(data)}")
    mint_authority, off = _read_coption_pubkey(data, 0)
    supply, decimals, initialized = struct.unpack_from("<QBB", data, off)
    freeze_authority, _ = _read_coption_pubkey(data, off + 10)
    return MintDescriptor(
        address=address,
        decimals=int(decimals),
        mint_authority=mint_authority,
        freeze_authority=freeze_authority,
        supply=int(supply),
        is_initialized=bool(initialized),
    )


def encode_mint(m: MintDescriptor) -> bytes:
    out = (
        _write_coption_pubkey(m.mint_authority)
        + struct.pack("<QBB", m.supply, m.decimals, 1 if m.is_initialized else 0)
        + _write_coption_pubkey(m.freeze_authority)
    )
    assert len(out) == MINT_ACCOUNT_LEN
    return out


# ---- Token account ----


class TokenAccountState(int, Enum):
    UNINITIALIZED = 0
    INITIALIZED = 1
    FROZEN = 2


@dataclass(frozen=True, slots=True)
class TokenAccount:
    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    amount: int
    state: TokenAccountState = TokenAccountState.INITIALIZED


def decode_token_account(address: Pubkey, data: bytes) -> TokenAccount:
    if len(data) < TOKEN_ACCOUNT_LEN:
        raise LayoutError(f"token account too short: {len(data)}")
    mint = Pubkey(data[0:32])
    owner = Pubkey(data[32:64])
    (amount,) = struct.unpack_from("<Q", data, 64)
    # delegate COption occupies 72..108; state byte follows.
    state = TokenAccountState(data[108])
    return TokenAccount(address=address, mint=mint, owner=owner, amount=int(amount), state=state)


def encode_token_account(t: TokenAccount) -> bytes:
    out = bytearray(TOKEN_ACCOUNT_LEN)
    out[0:32] = t.mint.raw
    out[32:64] = t.owner.raw
    struct.pack_into("<Q", out, 64, t.amount)
    out[108] = int(t.state)
    return bytes(out)


# ---- Timelock vault state ----


@dataclass(frozen=True, slots=True)
class VaultStateRecord:
    mint: Pubkey
    destination: Pubkey
    release_at: int
    released: bool
    bump: int
    vault_bump: int


def decode_vault_state(data: bytes) -> VaultStateRecord:
    if len(data) < VAULT_STATE_LEN:
        raise LayoutError(f"vault state too short: {len(data)}")
    if data[:8] != VAULT_STATE_DISCRIMINATOR:
        raise LayoutError("account is not a VaultState")
    release_at, released, bump, vault_bump = struct.unpack_from("<qBBB", data, 72)
    return VaultStateRecord(
        mint=Pubkey(data[8:40]),
        destination=Pubkey(data[40:72]),
        release_at=int(release_at),
        released=bool(released),
        bump=int(bump),
        vault_bump=int(vault_bump),
    )


def encode_vault_state(v: VaultStateRecord) -> bytes:
    return (
        VAULT_STATE_DISCRIMINATOR
        + v.mint.raw
        + v.destination.raw
        + struct.pack("<qBBB", v.release_at, 1 if v.released else 0, v.bump, v.vault_bump)
    )


# ---- Token metadata ----

METADATA_KEY_V1 = 4
MAX_NAME_LEN = 32
MAX_SYMBOL_LEN = 10
MAX_URI_LEN = 200


@dataclass(frozen=True, slots=True)
class MetadataRecord:
    update_authority: Pubkey
    mint: Pubkey
    name: str
    symbol: str
    uri: str
    is_mutable: bool = True


def borsh_string(s: str) -> bytes:
    b = s.encode("utf-8")
    return struct.pack("<I", len(b)) + b


def _read_borsh_string(data: bytes, offset: int) -> Tuple[str, int]:
    (n,) = struct.unpack_from("<I", data, offset)
    start = offset + 4
    if start + n > len(data):
        raise LayoutError("string runs past end of account")
    return data[start : start + n].decode("utf-8").rstrip("\x00"), start + n


def decode_metadata(data: bytes) -> MetadataRecord:
    if not data or data[0] != METADATA_KEY_V1:
        raise LayoutError("account is not a MetadataV1")
    update_authority = Pubkey(data[1:33])
    mint = Pubkey(data[33:65])
    name, off = _read_borsh_string(data, 65)
    symbol, off = _read_borsh_string(data, off)
    uri, off = _read_borsh_string(data, off)
    # seller_fee u16, creators/primary_sale fields follow; is_mutable sits after them.
    off += 2
    has_creators = data[off] if off < len(data) else 0
    off += 1
    if has_creators:
        (n,) = struct.unpack_from("<I", data, off)
        off += 4 + n * 34
    off += 1  # primary_sale_happened
    is_mutable = bool(data[off]) if off < len(data) else True
    return MetadataRecord(
        update_authority=update_authority,
        mint=mint,
        name=name,
        symbol=symbol,
        uri=uri,
        is_mutable=is_mutable,
    )


def encode_metadata(m: MetadataRecord) -> bytes:
    # Fields are stored null-padded to their maximum lengths.
    return (
        bytes([METADATA_KEY_V1])
        + m.update_authority.raw
        + m.mint.raw
        + borsh_string(m.name.ljust(MAX_NAME_LEN, "\x00"))
        + borsh_string(m.symbol.ljust(MAX_SYMBOL_LEN, "\x00"))
        + borsh_string(m.uri.ljust(MAX_URI_LEN, "\x00"))
        + struct.pack("<H", 0)
        + b"\x00"  # creators: None
        + b"\x00"  # primary_sale_happened
        + (b"\x01" if m.is_mutable else b"\x00")
    )


# ---- Clock sysvar ----


@dataclass(frozen=True, slots=True)
class Clock:
    slot: int
    epoch_start_timestamp: int
    epoch: int
    leader_schedule_epoch: int
    unix_timestamp: int


def decode_clock(data: bytes) -> Clock:
    if len(data) < 40:
        raise LayoutError("clock sysvar too short")
    return Clock(*struct.unpack_from("<QqQQq", data, 0))


def encode_clock(c: Clock) -> bytes:
    return struct.pack("<QqQQq", c.slot, c.epoch_start_timestamp, c.epoch, c.leader_schedule_epoch, c.unix_timestamp)
