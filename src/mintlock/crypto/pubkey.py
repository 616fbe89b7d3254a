# src/mintlock/crypto/pubkey.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import base58

PUBKEY_LEN = 32


@dataclass(frozen=True, slots=True)
class Pubkey:
    """32-byte ledger address. Text form is base58."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)) or len(self.raw) != PUBKEY_LEN:
            raise ValueError(f"pubkey must be {PUBKEY_LEN} bytes")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_string(cls, s: str) -> "Pubkey":
        s = (s or "").strip()
        if not s:
            raise ValueError("empty pubkey string")
        try:
            raw = base58.b58decode(s)
        except ValueError as e:
            raise ValueError(f"not base58: {s!r}") from e
        if len(raw) != PUBKEY_LEN:
            raise ValueError(f"pubkey {s!r} decodes to {len(raw)} bytes")
        return cls(raw)

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return base58.b58encode(self.raw).decode("ascii")

    def __repr__(self) -> str:
        return f"Pubkey({self})"


PubkeyLike = Union[Pubkey, str, bytes]


def as_pubkey(v: PubkeyLike) -> Pubkey:
    if isinstance(v, Pubkey):
        return v
    if isinstance(v, (bytes, bytearray)):
        return Pubkey(bytes(v))
    if isinstance(v, str):
        return Pubkey.from_string(v)
    raise TypeError(f"cannot convert {type(v).__name__} to Pubkey")
