from __future__ import annotations

import hashlib

from mintlock.crypto.keys import Keypair


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def deterministic_keypair(*, label: str) -> Keypair:
    """Deterministically derive an Ed25519 keypair from a stable label.

    TEST ONLY.
    """
    seed = _sha256(("mintlock-test-ed25519:" + (label or "")).encode("utf-8"))
    return Keypair.from_seed(seed)
