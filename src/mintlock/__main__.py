# src/mintlock/__main__.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from mintlock import operations
from mintlock.amounts import U64_MAX, format_whole_tokens, to_base_units
from mintlock.config import (
    ClusterConfig,
    config_env,
    load_cluster_config,
    load_issuance_config,
    load_metadata_config,
    load_vault_config,
    parse_decimals,
    require_pubkey,
)
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.env import load_dotenv_if_present
from mintlock.errors import InvalidConfig, MintlockError
from mintlock.ledger.client import LedgerClient
from mintlock.ledger.rpc import RpcLedger
from mintlock.pipeline.vault import AllocationPlan
from mintlock.pipeline.verify import describe_escrow, describe_mint
from mintlock.structured_logging import configure_structured_logging, log_event

Json = Dict[str, Any]

log = logging.getLogger("mintlock.cli")

LAMPORTS_PER_SOL = 1_000_000_000


def _print(obj: Json) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_keypair(path: Optional[str], field: str = "PAYER_KEYPAIR") -> Keypair:
    try:
        return Keypair.from_json_file(path)
    except (OSError, ValueError) as e:
        raise InvalidConfig("invalid_config", "unreadable_keypair", {"field": field, "path": path, "error": str(e)}) from e


class _Context:
    """Lazily built collaborators for one CLI invocation."""

    def __init__(self, env: Mapping[str, str], ledger: Optional[LedgerClient]) -> None:
        self.env = env
        self._ledger = ledger
        self._cluster: Optional[ClusterConfig] = None
        self._payer: Optional[Keypair] = None

    @property
    def cluster(self) -> ClusterConfig:
        if self._cluster is None:
            self._cluster = load_cluster_config(self.env)
        return self._cluster

    @property
    def ledger(self) -> LedgerClient:
        if self._ledger is None:
            c = self.cluster
            self._ledger = RpcLedger(c.rpc_url, commitment=c.commitment, confirm_timeout_s=c.confirm_timeout_s)
        return self._ledger

    @property
    def payer(self) -> Keypair:
        if self._payer is None:
            self._payer = _load_keypair(self.cluster.payer_keypair_path)
        return self._payer


# ---- commands ----


def cmd_supply_calc(ctx: _Context, args: argparse.Namespace) -> int:
    decimals = args.decimals if args.decimals is not None else parse_decimals(ctx.env.get("MINT_DECIMALS"))
    whole = args.supply or str(ctx.env.get("INITIAL_SUPPLY") or "1000000000")
    base = to_base_units(whole, decimals)
    _print(
        {
            "decimals": decimals,
            "whole_supply": whole.strip(),
            "base_units": str(base),
            "display": format_whole_tokens(base, decimals),
            "fits_u64": base <= U64_MAX,
        }
    )
    return 0


def cmd_keygen(ctx: _Context, args: argparse.Namespace) -> int:
    kp = Keypair.generate()
    path = kp.write_json_file(args.out)
    _print({"path": str(path), "pubkey": str(kp.pubkey)})
    return 0


def cmd_preflight(ctx: _Context, args: argparse.Namespace) -> int:
    payer = ctx.payer
    lamports = ctx.ledger.get_balance(payer.pubkey)
    _print(
        {
            "rpc_url": ctx.cluster.rpc_url,
            "fee_payer": str(payer.pubkey),
            "lamports": lamports,
            "sol": f"{lamports / LAMPORTS_PER_SOL:.6f}",
        }
    )
    return 0


def cmd_create_token(ctx: _Context, args: argparse.Namespace) -> int:
    cfg = load_issuance_config(ctx.env)
    if args.resume_mint:
        cfg = replace(cfg, resume_mint=require_pubkey(args.resume_mint, "--resume-mint"))
    mint_kp = _load_keypair(args.mint_keypair, "--mint-keypair") if args.mint_keypair else None
    result = operations.create_fixed_supply_token(ctx.ledger, ctx.payer, cfg, mint_keypair=mint_kp)
    out = describe_mint(result.descriptor, operations.read_metadata(ctx.ledger, result.mint))
    out["destination_token_account"] = str(result.destination_token_account)
    out["steps"] = [{"step": r.step.value, "outcome": r.outcome.value} for r in result.steps]
    _print(out)
    return 0


def _mint_arg(ctx: _Context, args: argparse.Namespace) -> Pubkey:
    return require_pubkey(getattr(args, "mint", None) or ctx.env.get("MINT_ADDRESS"), "MINT_ADDRESS")


def cmd_verify(ctx: _Context, args: argparse.Namespace) -> int:
    mint = _mint_arg(ctx, args)
    m = operations.verify_mint(ctx.ledger, mint)
    _print(describe_mint(m, operations.read_metadata(ctx.ledger, mint)))
    return 0


def cmd_init_vault(ctx: _Context, args: argparse.Namespace) -> int:
    v = load_vault_config(ctx.env)
    escrow = operations.initialize_vault(ctx.ledger, ctx.payer, v.program_id, v.mint, v.destination_owner, v.release_at)
    _print(describe_escrow(escrow))
    return 0


def cmd_deposit(ctx: _Context, args: argparse.Namespace) -> int:
    v = load_vault_config(ctx.env)
    mint = operations.verify_mint(ctx.ledger, v.mint)
    amount = to_base_units(args.amount or v.lock_amount, mint.decimals)
    escrow = operations.verify_vault(ctx.ledger, v.program_id, v.mint, v.destination_owner)
    source = _load_keypair(args.source_keypair, "--source-keypair") if args.source_keypair else ctx.payer
    receipt = operations.deposit_to_vault(ctx.ledger, ctx.payer, escrow, amount, source)
    _print(
        {
            "signature": receipt.signature,
            "amount_base_units": str(receipt.amount),
            "vault_balance": format_whole_tokens(receipt.vault_balance_after, mint.decimals),
        }
    )
    return 0


def cmd_release(ctx: _Context, args: argparse.Namespace) -> int:
    program_id = require_pubkey(ctx.env.get("PROGRAM_ID"), "PROGRAM_ID")
    mint = _mint_arg(ctx, args)
    dest = require_pubkey(ctx.env.get("DEV_WALLET") or ctx.env.get("DESTINATION_OWNER"), "DEV_WALLET")
    escrow = operations.verify_vault(ctx.ledger, program_id, mint, dest)
    moved = operations.release_vault(ctx.ledger, ctx.payer, escrow)
    decimals = operations.verify_mint(ctx.ledger, mint).decimals
    _print(
        {
            "released_base_units": str(moved),
            "released": format_whole_tokens(moved, decimals),
            "destination_token_account": str(escrow.destination_token_account),
        }
    )
    return 0


def cmd_verify_vault(ctx: _Context, args: argparse.Namespace) -> int:
    program_id = require_pubkey(ctx.env.get("PROGRAM_ID"), "PROGRAM_ID")
    mint = _mint_arg(ctx, args)
    dest = require_pubkey(ctx.env.get("DEV_WALLET") or ctx.env.get("DESTINATION_OWNER"), "DEV_WALLET")
    escrow = operations.verify_vault(ctx.ledger, program_id, mint, dest)
    decimals = operations.verify_mint(ctx.ledger, mint).decimals
    _print(describe_escrow(escrow, decimals))
    return 0


def cmd_lock_allocation(ctx: _Context, args: argparse.Namespace) -> int:
    v = load_vault_config(ctx.env)
    decimals = operations.verify_mint(ctx.ledger, v.mint).decimals
    source = _load_keypair(args.source_keypair, "--source-keypair") if args.source_keypair else ctx.payer
    plan = AllocationPlan(
        mint=v.mint,
        immediate_whole=v.immediate_amount,
        locked_whole=v.lock_amount,
        decimals=decimals,
        release_at=v.release_at,
        source_owner=v.source_owner or source.pubkey,
        destination_owner=v.destination_owner,
    )
    result = operations.lock_allocation(ctx.ledger, ctx.payer, v.program_id, plan, source)
    out = describe_escrow(result.escrow, decimals)
    out["immediate_base_units"] = str(result.immediate_base_units)
    out["immediate_signature"] = result.immediate_signature
    _print(out)
    return 0


def cmd_update_metadata(ctx: _Context, args: argparse.Namespace) -> int:
    mint = _mint_arg(ctx, args)
    md = load_metadata_config(ctx.env)
    if not md.enabled:
        raise InvalidConfig("invalid_config", "metadata_incomplete", {"required": ["METADATA_NAME", "METADATA_SYMBOL", "METADATA_URI"]})
    record = operations.update_metadata(
        ctx.ledger, ctx.payer, mint, name=md.name, symbol=md.symbol, uri=md.uri, new_update_authority=md.update_authority
    )
    _print(
        {
            "mint": str(mint),
            "name": record.name,
            "symbol": record.symbol,
            "uri": record.uri,
            "update_authority": str(record.update_authority),
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mintlock", description="Fixed-supply token issuance and time-locked escrow")
    p.add_argument("--config", default=None, help="JSON file with the same keys as the environment")
    p.add_argument("--env-file", default=None, help=".env file to load before reading config")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("supply-calc", help="offline whole -> base unit check")
    s.add_argument("--decimals", type=int, default=None)
    s.add_argument("--supply", default=None, help="whole tokens")
    s.set_defaults(fn=cmd_supply_calc)

    s = sub.add_parser("keygen", help="write a new keypair file")
    s.add_argument("out")
    s.set_defaults(fn=cmd_keygen)

    s = sub.add_parser("preflight", help="show fee payer balance")
    s.set_defaults(fn=cmd_preflight)

    s = sub.add_parser("create-token", help="run the issuance pipeline")
    s.add_argument("--mint-keypair", default=None)
    s.add_argument("--resume-mint", default=None, help="continue against an existing mint")
    s.set_defaults(fn=cmd_create_token)

    for name, fn, helptext in (
        ("verify", cmd_verify, "read back a mint"),
        ("release", cmd_release, "release a vault after its deadline"),
        ("verify-vault", cmd_verify_vault, "read back an escrow"),
        ("update-metadata", cmd_update_metadata, "rewrite name, symbol and uri"),
    ):
        s = sub.add_parser(name, help=helptext)
        s.add_argument("mint", nargs="?", default=None)
        s.set_defaults(fn=fn)

    s = sub.add_parser("init-vault", help="create the vault state for MINT_ADDRESS and DEV_WALLET")
    s.set_defaults(fn=cmd_init_vault)

    s = sub.add_parser("deposit", help="move tokens into an initialized vault")
    s.add_argument("--amount", default=None, help="whole tokens (default LOCK_AMOUNT)")
    s.add_argument("--source-keypair", default=None)
    s.set_defaults(fn=cmd_deposit)

    s = sub.add_parser("lock-allocation", help="pay IMMEDIATE_AMOUNT and lock LOCK_AMOUNT")
    s.add_argument("--source-keypair", default=None)
    s.set_defaults(fn=cmd_lock_allocation)

    return p


def main(argv: Optional[List[str]] = None, *, env: Optional[Mapping[str, str]] = None, ledger: Optional[LedgerClient] = None) -> int:
    args = build_parser().parse_args(argv)

    if env is None:
        load_dotenv_if_present(args.env_file)
    try:
        merged = config_env(args.config, env)
        configure_structured_logging(str(merged.get("MINTLOCK_LOG_LEVEL") or "INFO"))
        ctx = _Context(merged, ledger)
        return int(args.fn(ctx, args))
    except MintlockError as e:
        log_event(log, "command_failed", command=args.command, code=e.code, reason=e.reason, last_confirmed_step=e.last_confirmed_step)
        msg = f"error: {e.code}:{e.reason}"
        if e.last_confirmed_step:
            msg += f" (last confirmed step: {e.last_confirmed_step})"
        print(msg, file=sys.stderr)
        if e.details:
            print(json.dumps(e.details, indent=2, sort_keys=True, default=str), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
