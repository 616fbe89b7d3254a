# src/mintlock/crypto/keys.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from mintlock.crypto.pubkey import Pubkey

DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"


class Keypair:
    """Ed25519 signing key with its ledger address.

    File format is the ledger CLI's: a JSON array of 64 integers, the 32-byte
    seed followed by the 32-byte public key.
    """

    __slots__ = ("_sk", "_pubkey")

    def __init__(self, sk: Ed25519PrivateKey) -> None:
        self._sk = sk
        self._pubkey = Pubkey(sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw))

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != 32:
            raise ValueError("ed25519 seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_secret_key(cls, secret: bytes) -> "Keypair":
        if len(secret) != 64:
            raise ValueError("secret key must be 64 bytes (seed + pubkey)")
        kp = cls.from_seed(secret[:32])
        if kp.pubkey.raw != secret[32:]:
            raise ValueError("secret key public half does not match seed")
        return kp

    @classmethod
    def from_json_file(cls, path: Optional[str] = None) -> "Keypair":
        p = Path(path or DEFAULT_KEYPAIR_PATH).expanduser()
        raw = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(raw, list) or not all(isinstance(x, int) for x in raw):
            raise ValueError(f"keypair file {str(p)!r} must be a JSON array of integers")
        return cls.from_secret_key(bytes(raw))

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    def seed(self) -> bytes:
        return self._sk.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())

    def secret_key(self) -> List[int]:
        return list(self.seed() + self._pubkey.raw)

    def sign(self, message: bytes) -> bytes:
        return self._sk.sign(message)

    def write_json_file(self, path: str) -> Path:
        p = Path(path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.secret_key()) + "\n", encoding="utf-8")
        os.chmod(p, 0o600)
        return p

    def __repr__(self) -> str:
        return f"Keypair({self._pubkey})"


def verify_signature(pubkey: Pubkey, message: bytes, sig: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(pubkey.raw).verify(sig, message)
        return True
    except (InvalidSignature, ValueError):
        return False
