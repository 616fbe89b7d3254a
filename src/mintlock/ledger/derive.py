# src/mintlock/ledger/derive.py
"""Deterministic program-derived addresses.

An address is sha256(seeds || bump || program_id || "ProgramDerivedAddress")
and is only valid when it is NOT an ed25519 point, so no private key can
exist for it. The caller and the on-chain program compute the same value
independently; this module must match the ledger's scheme bit for bit.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Sequence, Tuple

from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AddressDerivationExhausted
from mintlock.ledger.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MAX_SEED_LEN,
    MAX_SEEDS,
    METADATA_PROGRAM_ID,
    METADATA_SEED,
    PDA_MARKER,
    TOKEN_PROGRAM_ID,
    VAULT_AUTH_SEED,
    VAULT_STATE_SEED,
)

# Curve25519 field prime and the twisted Edwards constant d = -121665/121666.
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


class InvalidSeeds(ValueError):
    """Seeds produced an on-curve point, or violate seed limits."""


def is_on_curve(b: bytes) -> bool:
    """True if `b` decompresses to an ed25519 point.

    y is the low 255 bits (sign bit dropped, reduced mod p). The point exists
    iff x^2 = (y^2 - 1) / (d*y^2 + 1) has a square root in GF(p).
    """
    if len(b) != 32:
        return False
    y = (int.from_bytes(b, "little") & ((1 << 255) - 1)) % _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: Sequence[bytes]) -> None:
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeeds(f"at most {MAX_SEEDS} seeds; got {len(seeds)}")
    for s in seeds:
        if len(s) > MAX_SEED_LEN:
            raise InvalidSeeds(f"seed longer than {MAX_SEED_LEN} bytes")


def create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey:
    _check_seeds(seeds)
    h = hashlib.sha256()
    for s in seeds:
        h.update(bytes(s))
    h.update(program_id.raw)
    h.update(PDA_MARKER)
    digest = h.digest()
    if is_on_curve(digest):
        raise InvalidSeeds("derived address is on the ed25519 curve")
    return Pubkey(digest)


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Search bumps 255..1 and return the first off-curve address with its bump."""
    seeds = [bytes(s) for s in seeds]
    _check_seeds(list(seeds) + [b"\x00"])
    for bump in range(255, 0, -1):
        try:
            return create_program_address(seeds + [bytes([bump])], program_id), bump
        except InvalidSeeds:
            continue
    raise AddressDerivationExhausted(
        "derivation_exhausted",
        "no_off_curve_address",
        {"program_id": str(program_id), "seeds": [s.hex() for s in seeds]},
    )


def vault_state_address(program_id: Pubkey, mint: Pubkey, destination_owner: Pubkey) -> Tuple[Pubkey, int]:
    return find_program_address([VAULT_STATE_SEED, mint.raw, destination_owner.raw], program_id)


def vault_authority_address(program_id: Pubkey, state: Pubkey) -> Tuple[Pubkey, int]:
    return find_program_address([VAULT_AUTH_SEED, state.raw], program_id)


def metadata_address(mint: Pubkey, metadata_program_id: Pubkey = METADATA_PROGRAM_ID) -> Pubkey:
    addr, _ = find_program_address([METADATA_SEED, metadata_program_id.raw, mint.raw], metadata_program_id)
    return addr


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    addr, _ = find_program_address([owner.raw, TOKEN_PROGRAM_ID.raw, mint.raw], ASSOCIATED_TOKEN_PROGRAM_ID)
    return addr


@dataclass(frozen=True, slots=True)
class EscrowAddresses:
    program_id: Pubkey
    mint: Pubkey
    destination_owner: Pubkey
    state: Pubkey
    state_bump: int
    vault_authority: Pubkey
    vault_bump: int
    vault_token_account: Pubkey
    destination_token_account: Pubkey


def derive_escrow_addresses(program_id: Pubkey, mint: Pubkey, destination_owner: Pubkey) -> EscrowAddresses:
    state, state_bump = vault_state_address(program_id, mint, destination_owner)
    vault_authority, vault_bump = vault_authority_address(program_id, state)
    return EscrowAddresses(
        program_id=program_id,
        mint=mint,
        destination_owner=destination_owner,
        state=state,
        state_bump=state_bump,
        vault_authority=vault_authority,
        vault_bump=vault_bump,
        vault_token_account=associated_token_address(vault_authority, mint),
        destination_token_account=associated_token_address(destination_owner, mint),
    )
