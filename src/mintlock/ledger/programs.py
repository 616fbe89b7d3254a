# src/mintlock/ledger/programs.py
"""Program rules executed by the in-memory reference ledger.

These processors decode the same instruction bytes the real programs do and
enforce the same checks, including the timelock program's release-time gate,
which is evaluated against the ledger clock only.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from mintlock.amounts import U64_MAX
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.constants import (
    MINT_ACCOUNT_LEN,
    TOKEN_ACCOUNT_LEN,
    TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    VAULT_STATE_LEN,
    SYSTEM_PROGRAM_ID,
)
from mintlock.ledger.derive import (
    associated_token_address,
    metadata_address,
    vault_authority_address,
    vault_state_address,
)
from mintlock.ledger.instructions import (
    ATA_CREATE_IDEMPOTENT,
    SYSTEM_CREATE_ACCOUNT,
    TIMELOCK_ERROR_CODES,
    TIMELOCK_INITIALIZE,
    TIMELOCK_RELEASE,
    AuthorityType,
    Instruction,
    MetadataIx,
    TokenIx,
)
from mintlock.ledger.layouts import (
    AccountInfo,
    LayoutError,
    MetadataRecord,
    MintDescriptor,
    TokenAccount,
    VaultStateRecord,
    decode_metadata,
    decode_mint,
    decode_token_account,
    decode_vault_state,
    encode_metadata,
    encode_mint,
    encode_token_account,
    encode_vault_state,
)


class ProgramError(Exception):
    def __init__(self, name: str, custom: Optional[int] = None) -> None:
        super().__init__(name)
        self.name = name
        self.custom = custom


def _timelock_error(name: str) -> ProgramError:
    return ProgramError(name, TIMELOCK_ERROR_CODES[name])


@dataclass
class ExecContext:
    accounts: Dict[Pubkey, AccountInfo]
    signers: Set[Pubkey]
    unix_timestamp: int
    rent: Callable[[int], int]

    def get(self, pk: Pubkey) -> Optional[AccountInfo]:
        return self.accounts.get(pk)

    def put(self, ix: Instruction, pk: Pubkey, info: AccountInfo) -> None:
        if not any(m.pubkey == pk and m.is_writable for m in ix.accounts):
            raise ProgramError("AccountNotWritable")
        self.accounts[pk] = info

    def debit(self, ix: Instruction, pk: Pubkey, lamports: int) -> None:
        acct = self.get(pk)
        if acct is None or acct.lamports < lamports:
            raise ProgramError("InsufficientFundsForRent")
        self.put(ix, pk, AccountInfo(acct.lamports - lamports, acct.owner, acct.data, acct.executable))

    def create(self, ix: Instruction, payer: Pubkey, pk: Pubkey, owner: Pubkey, data: bytes) -> None:
        existing = self.get(pk)
        if existing is not None and (existing.lamports > 0 or existing.data):
            raise ProgramError("AccountAlreadyInUse")
        lamports = self.rent(len(data))
        self.debit(ix, payer, lamports)
        self.put(ix, pk, AccountInfo(lamports, owner, data))

    def rewrite(self, ix: Instruction, pk: Pubkey, data: bytes) -> None:
        acct = self.get(pk)
        assert acct is not None
        self.put(ix, pk, AccountInfo(acct.lamports, acct.owner, data, acct.executable))


class _Reader:
    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.off = offset

    def take(self, n: int) -> bytes:
        if self.off + n > len(self.data):
            raise ProgramError("InvalidInstructionData")
        b = self.data[self.off : self.off + n]
        self.off += n
        return b

    def u8(self) -> int:
        return self.take(1)[0]

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def pubkey(self) -> Pubkey:
        return Pubkey(self.take(32))

    def string(self) -> str:
        (n,) = self.unpack("<I")
        return self.take(n).decode("utf-8")

    def option_pubkey(self) -> Optional[Pubkey]:
        return self.pubkey() if self.u8() else None


def _key(ix: Instruction, i: int) -> Pubkey:
    if i >= len(ix.accounts):
        raise ProgramError("NotEnoughAccountKeys")
    return ix.accounts[i].pubkey


def _require_signer(ctx: ExecContext, ix: Instruction, i: int) -> Pubkey:
    pk = _key(ix, i)
    if not ix.accounts[i].is_signer or pk not in ctx.signers:
        raise ProgramError("MissingRequiredSignature")
    return pk


def _load_mint(ctx: ExecContext, pk: Pubkey) -> MintDescriptor:
    acct = ctx.get(pk)
    if acct is None or acct.owner != TOKEN_PROGRAM_ID or len(acct.data) != MINT_ACCOUNT_LEN:
        raise ProgramError("InvalidMint")
    m = decode_mint(pk, acct.data)
    if not m.is_initialized:
        raise ProgramError("UninitializedState")
    return m


def _load_token_account(ctx: ExecContext, pk: Pubkey) -> TokenAccount:
    acct = ctx.get(pk)
    if acct is None or acct.owner != TOKEN_PROGRAM_ID or len(acct.data) != TOKEN_ACCOUNT_LEN:
        raise ProgramError("InvalidAccountData")
    return decode_token_account(pk, acct.data)


# ---- system ----


def process_system(ctx: ExecContext, ix: Instruction) -> None:
    r = _Reader(ix.data)
    (tag,) = r.unpack("<I")
    if tag != SYSTEM_CREATE_ACCOUNT:
        raise ProgramError("InvalidInstructionData")
    lamports, space = r.unpack("<QQ")
    owner = r.pubkey()
    payer = _require_signer(ctx, ix, 0)
    new = _require_signer(ctx, ix, 1)
    existing = ctx.get(new)
    if existing is not None and (existing.lamports > 0 or existing.data):
        raise ProgramError("AccountAlreadyInUse")
    ctx.debit(ix, payer, lamports)
    ctx.put(ix, new, AccountInfo(lamports, owner, bytes(space)))


# ---- token ----


def process_token(ctx: ExecContext, ix: Instruction) -> None:
    r = _Reader(ix.data)
    tag = r.u8()

    if tag == TokenIx.INITIALIZE_MINT2:
        decimals = r.u8()
        mint_authority = r.pubkey()
        freeze_authority = r.option_pubkey()
        pk = _key(ix, 0)
        acct = ctx.get(pk)
        if acct is None or acct.owner != TOKEN_PROGRAM_ID or len(acct.data) != MINT_ACCOUNT_LEN:
            raise ProgramError("InvalidAccountData")
        if decode_mint(pk, acct.data).is_initialized:
            raise ProgramError("AlreadyInUse")
        m = MintDescriptor(pk, decimals, mint_authority, freeze_authority, supply=0, is_initialized=True)
        ctx.rewrite(ix, pk, encode_mint(m))
        return

    if tag == TokenIx.MINT_TO:
        (amount,) = r.unpack("<Q")
        mint = _load_mint(ctx, _key(ix, 0))
        dest = _load_token_account(ctx, _key(ix, 1))
        authority = _require_signer(ctx, ix, 2)
        if mint.mint_authority is None:
            raise ProgramError("FixedSupply")
        if mint.mint_authority != authority:
            raise ProgramError("OwnerMismatch")
        if dest.mint != mint.address:
            raise ProgramError("MintMismatch")
        if mint.supply + amount > U64_MAX:
            raise ProgramError("Overflow")
        ctx.rewrite(ix, mint.address, encode_mint(_replace_mint(mint, supply=mint.supply + amount)))
        ctx.rewrite(ix, dest.address, encode_token_account(_replace_token(dest, amount=dest.amount + amount)))
        return

    if tag == TokenIx.SET_AUTHORITY:
        authority_type = r.u8()
        new_authority = r.option_pubkey()
        mint = _load_mint(ctx, _key(ix, 0))
        current = _require_signer(ctx, ix, 1)
        if authority_type == AuthorityType.MINT_TOKENS:
            if mint.mint_authority is None:
                raise ProgramError("FixedSupply")
            if mint.mint_authority != current:
                raise ProgramError("OwnerMismatch")
            updated = _replace_mint(mint, mint_authority=new_authority)
        elif authority_type == AuthorityType.FREEZE_ACCOUNT:
            if mint.freeze_authority is None:
                raise ProgramError("MintCannotFreeze")
            if mint.freeze_authority != current:
                raise ProgramError("OwnerMismatch")
            updated = _replace_mint(mint, freeze_authority=new_authority)
        else:
            raise ProgramError("AuthorityTypeNotSupported")
        ctx.rewrite(ix, mint.address, encode_mint(updated))
        return

    if tag == TokenIx.TRANSFER_CHECKED:
        amount, decimals = r.unpack("<QB")
        src = _load_token_account(ctx, _key(ix, 0))
        mint = _load_mint(ctx, _key(ix, 1))
        dst = _load_token_account(ctx, _key(ix, 2))
        owner = _require_signer(ctx, ix, 3)
        if src.owner != owner:
            raise ProgramError("OwnerMismatch")
        if src.mint != mint.address or dst.mint != mint.address:
            raise ProgramError("MintMismatch")
        if decimals != mint.decimals:
            raise ProgramError("MintDecimalsMismatch")
        _move_tokens(ctx, ix, src, dst, amount)
        return

    raise ProgramError("InvalidInstruction")


def _replace_mint(m: MintDescriptor, **changes) -> MintDescriptor:
    fields = {
        "address": m.address,
        "decimals": m.decimals,
        "mint_authority": m.mint_authority,
        "freeze_authority": m.freeze_authority,
        "supply": m.supply,
        "is_initialized": m.is_initialized,
    }
    fields.update(changes)
    return MintDescriptor(**fields)


def _replace_token(t: TokenAccount, **changes) -> TokenAccount:
    fields = {"address": t.address, "mint": t.mint, "owner": t.owner, "amount": t.amount, "state": t.state}
    fields.update(changes)
    return TokenAccount(**fields)


def _move_tokens(ctx: ExecContext, ix: Instruction, src: TokenAccount, dst: TokenAccount, amount: int) -> None:
    if amount > src.amount:
        raise ProgramError("InsufficientFunds")
    if src.address == dst.address:
        return
    ctx.rewrite(ix, src.address, encode_token_account(_replace_token(src, amount=src.amount - amount)))
    ctx.rewrite(ix, dst.address, encode_token_account(_replace_token(dst, amount=dst.amount + amount)))


# ---- associated token ----


def process_associated_token(ctx: ExecContext, ix: Instruction) -> None:
    if ix.data != bytes([ATA_CREATE_IDEMPOTENT]):
        raise ProgramError("InvalidInstructionData")
    payer = _require_signer(ctx, ix, 0)
    ata = _key(ix, 1)
    owner = _key(ix, 2)
    mint = _load_mint(ctx, _key(ix, 3))
    if ata != associated_token_address(owner, mint.address):
        raise ProgramError("InvalidSeeds")
    existing = ctx.get(ata)
    if existing is not None and existing.owner == TOKEN_PROGRAM_ID:
        acct = decode_token_account(ata, existing.data)
        if acct.owner != owner or acct.mint != mint.address:
            raise ProgramError("IllegalOwner")
        return
    data = encode_token_account(TokenAccount(address=ata, mint=mint.address, owner=owner, amount=0))
    ctx.create(ix, payer, ata, TOKEN_PROGRAM_ID, data)


# ---- token metadata ----


def process_metadata(ctx: ExecContext, ix: Instruction) -> None:
    r = _Reader(ix.data)
    tag = r.u8()

    if tag == MetadataIx.CREATE_METADATA_ACCOUNT_V3:
        name, symbol, uri = r.string(), r.string(), r.string()
        md_pk = _key(ix, 0)
        mint = _load_mint(ctx, _key(ix, 1))
        mint_authority = _require_signer(ctx, ix, 2)
        payer = _require_signer(ctx, ix, 3)
        update_authority = _key(ix, 4)
        if md_pk != metadata_address(mint.address):
            raise ProgramError("InvalidMetadataKey")
        if ctx.get(md_pk) is not None:
            raise ProgramError("AlreadyInitialized")
        if mint.mint_authority is None or mint.mint_authority != mint_authority:
            raise ProgramError("InvalidMintAuthority")
        record = MetadataRecord(update_authority=update_authority, mint=mint.address, name=name, symbol=symbol, uri=uri)
        ctx.create(ix, payer, md_pk, METADATA_PROGRAM_ID, encode_metadata(record))
        return

    if tag == MetadataIx.UPDATE_METADATA_ACCOUNT_V2:
        md_pk = _key(ix, 0)
        signer = _require_signer(ctx, ix, 1)
        acct = ctx.get(md_pk)
        if acct is None or acct.owner != METADATA_PROGRAM_ID:
            raise ProgramError("Uninitialized")
        try:
            current = decode_metadata(acct.data)
        except LayoutError as e:
            raise ProgramError("InvalidMetadataAccount") from e
        if current.update_authority != signer:
            raise ProgramError("UpdateAuthorityIncorrect")
        if not current.is_mutable:
            raise ProgramError("DataIsImmutable")
        name, symbol, uri = current.name, current.symbol, current.uri
        if r.u8():
            name, symbol, uri = r.string(), r.string(), r.string()
            r.take(2 + 3)  # seller fee + creators/collection/uses: None
        new_authority = r.option_pubkey() or current.update_authority
        record = MetadataRecord(
            update_authority=new_authority, mint=current.mint, name=name, symbol=symbol, uri=uri, is_mutable=True
        )
        ctx.rewrite(ix, md_pk, encode_metadata(record))
        return

    raise ProgramError("InstructionNotSupported")


# ---- timelock vault ----


def make_timelock_processor(program_id: Pubkey) -> Callable[[ExecContext, Instruction], None]:
    def process(ctx: ExecContext, ix: Instruction) -> None:
        disc = ix.data[:8]
        if disc == TIMELOCK_INITIALIZE:
            _timelock_initialize(ctx, ix, program_id)
        elif disc == TIMELOCK_RELEASE:
            _timelock_release(ctx, ix, program_id)
        else:
            raise ProgramError("InstructionFallbackNotFound")

    return process


def _timelock_initialize(ctx: ExecContext, ix: Instruction, program_id: Pubkey) -> None:
    release_at, _vault_bump = _Reader(ix.data, 8).unpack("<qB")
    payer = _require_signer(ctx, ix, 0)
    mint = _load_mint(ctx, _key(ix, 1))
    destination = _key(ix, 2)
    state_pk = _key(ix, 3)
    vault_authority = _key(ix, 4)
    if _key(ix, 5) != SYSTEM_PROGRAM_ID:
        raise ProgramError("InvalidProgramId")

    expected_state, bump = vault_state_address(program_id, mint.address, destination)
    expected_auth, vault_bump = vault_authority_address(program_id, expected_state)
    if state_pk != expected_state or vault_authority != expected_auth:
        raise ProgramError("ConstraintSeeds")
    if release_at <= ctx.unix_timestamp:
        raise _timelock_error("ReleaseInPast")

    record = VaultStateRecord(
        mint=mint.address, destination=destination, release_at=release_at, released=False, bump=bump, vault_bump=vault_bump
    )
    data = encode_vault_state(record)
    assert len(data) == VAULT_STATE_LEN
    ctx.create(ix, payer, state_pk, program_id, data)


def _timelock_release(ctx: ExecContext, ix: Instruction, program_id: Pubkey) -> None:
    _require_signer(ctx, ix, 0)
    mint = _load_mint(ctx, _key(ix, 1))
    state_pk = _key(ix, 2)
    vault_authority = _key(ix, 3)

    acct = ctx.get(state_pk)
    if acct is None or acct.owner != program_id:
        raise ProgramError("AccountNotInitialized")
    state = decode_vault_state(acct.data)
    if state.mint != mint.address:
        raise ProgramError("ConstraintHasOne")
    expected_state, _ = vault_state_address(program_id, mint.address, state.destination)
    expected_auth, _ = vault_authority_address(program_id, expected_state)
    if state_pk != expected_state or vault_authority != expected_auth:
        raise ProgramError("ConstraintSeeds")

    vault = _load_token_account(ctx, _key(ix, 4))
    dest = _load_token_account(ctx, _key(ix, 5))
    if vault.mint != mint.address or vault.owner != vault_authority:
        raise ProgramError("ConstraintRaw")
    if dest.mint != mint.address or dest.owner != state.destination:
        raise ProgramError("ConstraintRaw")

    if ctx.unix_timestamp < state.release_at:
        raise _timelock_error("TooEarly")
    if state.released:
        raise _timelock_error("AlreadyReleased")
    if vault.amount <= 0:
        raise _timelock_error("NothingToRelease")

    # The vault authority signs via its seeds; no external signature needed.
    _move_tokens(ctx, ix, vault, dest, vault.amount)
    released = VaultStateRecord(
        mint=state.mint,
        destination=state.destination,
        release_at=state.release_at,
        released=True,
        bump=state.bump,
        vault_bump=state.vault_bump,
    )
    ctx.rewrite(ix, state_pk, encode_vault_state(released))
