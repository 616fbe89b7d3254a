# src/mintlock/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from mintlock.amounts import to_base_units, validate_decimals
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import InvalidAmount, InvalidConfig
from mintlock.ledger.constants import COMMITMENTS
from mintlock.ledger.layouts import MAX_NAME_LEN, MAX_SYMBOL_LEN, MAX_URI_LEN

Json = Dict[str, Any]

DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_DECIMALS = 9
DEFAULT_INITIAL_SUPPLY = "1000000000"
DEFAULT_LOCK_AMOUNT = "600000000"


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except Exception:
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v).strip()
    return s if s else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_pubkey(v: Any, name: str) -> Optional[Pubkey]:
    s = str(v).strip() if v is not None else ""
    if not s:
        return None
    try:
        return Pubkey.from_string(s)
    except ValueError as e:
        raise InvalidConfig("invalid_config", "bad_pubkey", {"field": name, "value": s}) from e


def require_pubkey(v: Any, name: str) -> Pubkey:
    pk = _as_pubkey(v, name)
    if pk is None:
        raise InvalidConfig("invalid_config", "missing_field", {"field": name})
    return pk


def parse_decimals(v: Any) -> int:
    s = str(v).strip() if v is not None else ""
    if not s:
        return DEFAULT_DECIMALS
    try:
        return validate_decimals(int(s))
    except (ValueError, InvalidAmount) as e:
        raise InvalidConfig("invalid_config", "bad_decimals", {"field": "MINT_DECIMALS", "value": s}) from e


def parse_release_at(iso: str) -> int:
    """ISO-8601 timestamp to unix seconds. A bare date/time without offset is UTC."""
    s = (iso or "").strip()
    if not s:
        raise InvalidConfig("invalid_config", "missing_field", {"field": "RELEASE_AT_ISO"})
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as e:
        raise InvalidConfig("invalid_config", "bad_release_at", {"value": iso}) from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _whole_amount(v: Any, default: str, name: str) -> str:
    s = _as_str(v, default)
    try:
        to_base_units(s, 0)
    except InvalidAmount as e:
        raise InvalidConfig("invalid_config", "bad_amount", {"field": name, "value": s}) from e
    return s


@dataclass(frozen=True)
class ClusterConfig:
    rpc_url: str
    commitment: str  # "processed" | "confirmed" | "finalized"
    confirm_timeout_s: float
    payer_keypair_path: Optional[str]
    log_level: str


@dataclass(frozen=True)
class MetadataConfig:
    name: str
    symbol: str
    uri: str
    update_authority: Optional[Pubkey] = None

    @property
    def enabled(self) -> bool:
        """All three fields present; otherwise metadata is skipped."""
        return bool(self.name.strip() and self.symbol.strip() and self.uri.strip())


@dataclass(frozen=True)
class IssuanceConfig:
    decimals: int
    initial_supply: str  # whole tokens, decimal integer literal
    revoke_freeze_authority: bool
    destination_owner: Optional[Pubkey]  # None: the payer
    metadata: MetadataConfig
    resume_mint: Optional[Pubkey] = None

    @property
    def initial_supply_base_units(self) -> int:
        return to_base_units(self.initial_supply, self.decimals)


@dataclass(frozen=True)
class VaultConfig:
    program_id: Pubkey
    mint: Pubkey
    destination_owner: Pubkey
    release_at: int  # unix seconds
    lock_amount: str  # whole tokens
    immediate_amount: str  # whole tokens
    source_owner: Optional[Pubkey]  # None: the payer


def validate_cluster_config(cfg: ClusterConfig) -> None:
    if not cfg.rpc_url.startswith(("http://", "https://")):
        raise InvalidConfig("invalid_config", "bad_rpc_url", {"rpc_url": cfg.rpc_url})
    if cfg.commitment not in COMMITMENTS:
        raise InvalidConfig("invalid_config", "bad_commitment", {"commitment": cfg.commitment, "allowed": list(COMMITMENTS)})
    if cfg.confirm_timeout_s <= 0:
        raise InvalidConfig("invalid_config", "bad_confirm_timeout", {"confirm_timeout_s": cfg.confirm_timeout_s})


def validate_metadata_config(cfg: MetadataConfig) -> None:
    for field_name, v, limit in (
        ("METADATA_NAME", cfg.name, MAX_NAME_LEN),
        ("METADATA_SYMBOL", cfg.symbol, MAX_SYMBOL_LEN),
        ("METADATA_URI", cfg.uri, MAX_URI_LEN),
    ):
        if len(v.encode("utf-8")) > limit:
            raise InvalidConfig("invalid_config", "metadata_field_too_long", {"field": field_name, "max_bytes": limit})


def validate_issuance_config(cfg: IssuanceConfig) -> None:
    """Fail fast, before any ledger call."""
    try:
        validate_decimals(cfg.decimals)
        base = cfg.initial_supply_base_units
    except InvalidAmount as e:
        raise InvalidConfig("invalid_config", e.reason, e.details) from e
    if base <= 0:
        raise InvalidConfig("invalid_config", "initial_supply_must_be_positive", {"initial_supply": cfg.initial_supply})
    validate_metadata_config(cfg.metadata)


def validate_vault_config(cfg: VaultConfig) -> None:
    if cfg.release_at <= 0:
        raise InvalidConfig("invalid_config", "bad_release_at", {"release_at": cfg.release_at})
    if cfg.mint == cfg.destination_owner:
        raise InvalidConfig("invalid_config", "destination_is_mint", {"mint": str(cfg.mint)})


def load_cluster_config(env: Mapping[str, str]) -> ClusterConfig:
    cfg = ClusterConfig(
        rpc_url=_as_str(env.get("RPC_URL"), DEFAULT_RPC_URL),
        commitment=_as_str(env.get("MINTLOCK_COMMITMENT"), "confirmed").lower(),
        confirm_timeout_s=_as_float(env.get("MINTLOCK_CONFIRM_TIMEOUT_S"), 60.0),
        payer_keypair_path=(str(env.get("PAYER_KEYPAIR") or "").strip() or None),
        log_level=_as_str(env.get("MINTLOCK_LOG_LEVEL"), "INFO").upper(),
    )
    validate_cluster_config(cfg)
    return cfg


def load_metadata_config(env: Mapping[str, str]) -> MetadataConfig:
    cfg = MetadataConfig(
        name=str(env.get("METADATA_NAME") or "").strip(),
        symbol=str(env.get("METADATA_SYMBOL") or "").strip(),
        uri=str(env.get("METADATA_URI") or "").strip(),
        update_authority=_as_pubkey(env.get("METADATA_UPDATE_AUTHORITY_PUBKEY"), "METADATA_UPDATE_AUTHORITY_PUBKEY"),
    )
    validate_metadata_config(cfg)
    return cfg


def load_issuance_config(env: Mapping[str, str]) -> IssuanceConfig:
    initial_supply = _as_str(env.get("INITIAL_SUPPLY"), DEFAULT_INITIAL_SUPPLY)
    cfg = IssuanceConfig(
        decimals=parse_decimals(env.get("MINT_DECIMALS")),
        initial_supply=initial_supply,
        revoke_freeze_authority=_as_bool(env.get("REVOKE_FREEZE_AUTHORITY"), False),
        destination_owner=_as_pubkey(env.get("DESTINATION_OWNER"), "DESTINATION_OWNER"),
        metadata=load_metadata_config(env),
        resume_mint=_as_pubkey(env.get("RESUME_MINT"), "RESUME_MINT"),
    )
    validate_issuance_config(cfg)
    return cfg


def load_vault_config(env: Mapping[str, str]) -> VaultConfig:
    dest = env.get("DEV_WALLET") or env.get("DESTINATION_OWNER")
    cfg = VaultConfig(
        program_id=require_pubkey(env.get("PROGRAM_ID"), "PROGRAM_ID"),
        mint=require_pubkey(env.get("MINT_ADDRESS"), "MINT_ADDRESS"),
        destination_owner=require_pubkey(dest, "DEV_WALLET"),
        release_at=parse_release_at(str(env.get("RELEASE_AT_ISO") or "")),
        lock_amount=_whole_amount(env.get("LOCK_AMOUNT"), DEFAULT_LOCK_AMOUNT, "LOCK_AMOUNT"),
        immediate_amount=_whole_amount(env.get("IMMEDIATE_AMOUNT"), "0", "IMMEDIATE_AMOUNT"),
        source_owner=_as_pubkey(env.get("SOURCE_OWNER"), "SOURCE_OWNER"),
    )
    validate_vault_config(cfg)
    return cfg


def read_config_file(path: str) -> Dict[str, str]:
    """Read a flat JSON object of the same names as the environment.

    Values are stringified so the result feeds the `load_*_config` functions.
    """
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise InvalidConfig("invalid_config", "unreadable_config_file", {"path": str(p), "error": str(e)}) from e
    if not isinstance(raw, dict):
        raise InvalidConfig("invalid_config", "config_not_object", {"path": str(p)})
    return {str(k): ("" if v is None else str(v).lower() if isinstance(v, bool) else str(v)) for k, v in raw.items()}


def config_env(config_path: Optional[str] = None, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """`base` (default: the process environment), overlaid by an optional JSON file. The file wins."""
    merged: Dict[str, str] = dict(os.environ if base is None else base)
    if config_path:
        merged.update(read_config_file(config_path))
    return merged
