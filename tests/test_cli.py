from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterator

import pytest

from mintlock.__main__ import main
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.ledger.memory import MemoryLedger
from mintlock.testing.keys import deterministic_keypair


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    # main() installs a stderr handler bound to the stream captured for this test.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    if hasattr(root, "_mintlock_configured"):
        delattr(root, "_mintlock_configured")


def _env(tmp_path: Path, payer: Keypair, **extra: str) -> Dict[str, str]:
    key_path = tmp_path / "payer.json"
    if not key_path.exists():
        payer.write_json_file(str(key_path))
    env = {"PAYER_KEYPAIR": str(key_path), "MINTLOCK_LOG_LEVEL": "WARNING"}
    env.update(extra)
    return env


def _out(capsys: pytest.CaptureFixture) -> dict:
    return json.loads(capsys.readouterr().out)


def test_supply_calc(capsys: pytest.CaptureFixture) -> None:
    assert main(["supply-calc", "--decimals", "9", "--supply", "1000000000"], env={}) == 0
    out = _out(capsys)
    assert out["base_units"] == "1000000000000000000"
    assert out["display"] == "1,000,000,000"
    assert out["fits_u64"] is True

    assert main(["supply-calc", "--decimals", "18"], env={}) == 0
    assert _out(capsys)["fits_u64"] is False


def test_supply_calc_rejects_bad_input(capsys: pytest.CaptureFixture) -> None:
    assert main(["supply-calc", "--supply", "12.5"], env={}) == 1
    err = capsys.readouterr().err
    assert "invalid_amount:not_a_non_negative_integer" in err


def test_keygen_writes_loadable_file(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    target = tmp_path / "keys" / "mint.json"
    assert main(["keygen", str(target)], env={}) == 0
    out = _out(capsys)
    assert Keypair.from_json_file(str(target)).pubkey == Pubkey.from_string(out["pubkey"])


def test_create_token_then_verify(
    tmp_path: Path, ledger: MemoryLedger, payer: Keypair, capsys: pytest.CaptureFixture
) -> None:
    env = _env(
        tmp_path,
        payer,
        METADATA_NAME="Mintlock",
        METADATA_SYMBOL="MLK",
        METADATA_URI="https://example.invalid/m.json",
        REVOKE_FREEZE_AUTHORITY="true",
    )
    assert main(["create-token"], env=env, ledger=ledger) == 0
    created = _out(capsys)
    assert created["supply_base_units"] == str(10**18)
    assert created["fixed_supply"] is True
    assert created["freeze_authority"] is None
    assert [s["step"] for s in created["steps"]][-1] == "verify"

    assert main(["verify", created["mint"]], env=env, ledger=ledger) == 0
    verified = _out(capsys)
    assert verified["mint"] == created["mint"]
    assert verified["metadata"]["name"] == "Mintlock"


def test_resume_flag_reports_last_step_on_failure(
    tmp_path: Path, ledger: MemoryLedger, payer: Keypair, capsys: pytest.CaptureFixture
) -> None:
    missing = str(deterministic_keypair(label="cli-missing").pubkey)
    assert main(["create-token", "--resume-mint", missing], env=_env(tmp_path, payer), ledger=ledger) == 1
    err = capsys.readouterr().err
    assert "error: mint_creation_failed:resume_mint_not_found" in err


def test_vault_commands(
    tmp_path: Path, ledger: MemoryLedger, payer: Keypair, program_id: Pubkey, capsys: pytest.CaptureFixture
) -> None:
    env = _env(tmp_path, payer)
    assert main(["create-token"], env=env, ledger=ledger) == 0
    mint = _out(capsys)["mint"]

    dev = str(deterministic_keypair(label="cli-dev").pubkey)
    env = _env(
        tmp_path,
        payer,
        PROGRAM_ID=str(program_id),
        MINT_ADDRESS=mint,
        DEV_WALLET=dev,
        RELEASE_AT_ISO="2026-01-01T00:00:00Z",
        IMMEDIATE_AMOUNT="100000000",
        LOCK_AMOUNT="600000000",
    )
    ledger.set_time(1_767_000_000)

    assert main(["lock-allocation"], env=env, ledger=ledger) == 0
    locked = _out(capsys)
    assert locked["status"] == "locked"
    assert locked["vault_balance"] == "600,000,000"
    assert locked["immediate_base_units"] == str(100_000_000 * 10**9)

    assert main(["release"], env=env, ledger=ledger) == 1
    assert "release_too_early" in capsys.readouterr().err

    ledger.set_time(1_767_225_600)
    assert main(["release"], env=env, ledger=ledger) == 0
    assert _out(capsys)["released"] == "600,000,000"

    assert main(["verify-vault"], env=env, ledger=ledger) == 0
    assert _out(capsys)["status"] == "released"


def test_init_vault_and_deposit(
    tmp_path: Path, ledger: MemoryLedger, payer: Keypair, program_id: Pubkey, capsys: pytest.CaptureFixture
) -> None:
    env = _env(tmp_path, payer)
    assert main(["create-token"], env=env, ledger=ledger) == 0
    mint = _out(capsys)["mint"]

    env = _env(
        tmp_path,
        payer,
        PROGRAM_ID=str(program_id),
        MINT_ADDRESS=mint,
        DEV_WALLET=str(deterministic_keypair(label="cli-dev-2").pubkey),
        RELEASE_AT_ISO="2030-01-01T00:00:00Z",
    )
    assert main(["init-vault"], env=env, ledger=ledger) == 0
    assert _out(capsys)["status"] == "locked"

    assert main(["deposit", "--amount", "25"], env=env, ledger=ledger) == 0
    assert _out(capsys)["vault_balance"] == "25"

    assert main(["init-vault"], env=env, ledger=ledger) == 1
    assert "already_initialized" in capsys.readouterr().err


def test_missing_payer_keypair_is_a_config_error(tmp_path: Path, ledger: MemoryLedger, capsys: pytest.CaptureFixture) -> None:
    env = {"PAYER_KEYPAIR": str(tmp_path / "nope.json")}
    assert main(["preflight"], env=env, ledger=ledger) == 1
    assert "invalid_config:unreadable_keypair" in capsys.readouterr().err


def test_preflight_reports_balance(tmp_path: Path, ledger: MemoryLedger, payer: Keypair, capsys: pytest.CaptureFixture) -> None:
    assert main(["preflight"], env=_env(tmp_path, payer), ledger=ledger) == 0
    out = _out(capsys)
    assert out["fee_payer"] == str(payer.pubkey)
    assert out["lamports"] == 10 * 10**9


def test_usage_errors_exit_2() -> None:
    with pytest.raises(SystemExit) as ei:
        main([], env={})
    assert ei.value.code == 2
