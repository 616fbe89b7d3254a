from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "mintlock" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from mintlock.crypto.keys import Keypair  # noqa: E402
from mintlock.crypto.pubkey import Pubkey  # noqa: E402
from mintlock.ledger.memory import MemoryLedger  # noqa: E402
from mintlock.testing.keys import deterministic_keypair  # noqa: E402

GENESIS_TS = 1_750_000_000


@pytest.fixture
def payer() -> Keypair:
    return deterministic_keypair(label="payer")


@pytest.fixture
def program_id() -> Pubkey:
    return deterministic_keypair(label="timelock-program").pubkey


@pytest.fixture
def ledger(payer: Keypair, program_id: Pubkey) -> MemoryLedger:
    led = MemoryLedger(unix_timestamp=GENESIS_TS, timelock_program_id=program_id)
    led.airdrop(payer.pubkey)
    return led
