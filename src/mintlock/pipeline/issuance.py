# src/mintlock/pipeline/issuance.py
"""Fixed-supply issuance as an ordered, resumable state machine.

Steps run in a fixed order. Each one reads ledger state before writing and
records whether it did work or found its effect already present:

  CREATE_MINT -> PROVISION_DESTINATION -> MINT_SUPPLY -> ATTACH_METADATA
  -> REVOKE_MINT_AUTHORITY -> REVOKE_FREEZE_AUTHORITY -> VERIFY

Metadata is attached before the mint authority is revoked because the
metadata program requires the mint authority's signature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from mintlock.amounts import ensure_u64
from mintlock.config import IssuanceConfig
from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import (
    IssuanceVerificationFailed,
    MintCreationFailed,
    MintlockError,
)
from mintlock.ledger.client import LedgerClient, read_metadata, read_mint, require_mint, token_balance
from mintlock.ledger.constants import MINT_ACCOUNT_LEN, TOKEN_PROGRAM_ID
from mintlock.ledger.instructions import AuthorityType, create_account, initialize_mint2, mint_to, set_authority
from mintlock.ledger.layouts import MintDescriptor
from mintlock.pipeline.metadata import attach_metadata
from mintlock.pipeline.provision import provision_token_account
from mintlock.pipeline.submit import submit_or_reconcile
from mintlock.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("mintlock.pipeline.issuance")


class IssuanceStep(str, Enum):
    CREATE_MINT = "create_mint"
    PROVISION_DESTINATION = "provision_destination"
    MINT_SUPPLY = "mint_supply"
    ATTACH_METADATA = "attach_metadata"
    REVOKE_MINT_AUTHORITY = "revoke_mint_authority"
    REVOKE_FREEZE_AUTHORITY = "revoke_freeze_authority"
    VERIFY = "verify"


class StepOutcome(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepRecord:
    step: IssuanceStep
    outcome: StepOutcome
    detail: Json = field(default_factory=dict)


@dataclass(frozen=True)
class IssuanceResult:
    mint: Pubkey
    destination_owner: Pubkey
    destination_token_account: Pubkey
    descriptor: MintDescriptor
    steps: Tuple[StepRecord, ...]

    def outcome(self, step: IssuanceStep) -> Optional[StepOutcome]:
        for r in self.steps:
            if r.step == step:
                return r.outcome
        return None


class IssuancePipeline:
    def __init__(
        self,
        ledger: LedgerClient,
        payer: Keypair,
        cfg: IssuanceConfig,
        *,
        mint_keypair: Optional[Keypair] = None,
    ) -> None:
        self.ledger = ledger
        self.payer = payer
        self.cfg = cfg
        self.mint_keypair = mint_keypair
        self.destination_owner = cfg.destination_owner or payer.pubkey
        # Validated here so an out-of-range supply never reaches the ledger.
        self.supply_base_units = ensure_u64(cfg.initial_supply_base_units)

        self.mint: Optional[Pubkey] = None
        self.destination_token_account: Optional[Pubkey] = None
        self.records: List[StepRecord] = []
        self.last_confirmed_step: Optional[IssuanceStep] = None

    # ---- driver ----

    def run(self) -> IssuanceResult:
        steps: List[Tuple[IssuanceStep, Callable[[], StepRecord]]] = [
            (IssuanceStep.CREATE_MINT, self._create_mint),
            (IssuanceStep.PROVISION_DESTINATION, self._provision_destination),
            (IssuanceStep.MINT_SUPPLY, self._mint_supply),
            (IssuanceStep.ATTACH_METADATA, self._attach_metadata),
            (IssuanceStep.REVOKE_MINT_AUTHORITY, self._revoke_mint_authority),
            (IssuanceStep.REVOKE_FREEZE_AUTHORITY, self._revoke_freeze_authority),
            (IssuanceStep.VERIFY, self._verify),
        ]
        for step, fn in steps:
            try:
                record = fn()
            except MintlockError as e:
                e.last_confirmed_step = self.last_confirmed_step.value if self.last_confirmed_step else None
                log_event(
                    log,
                    "issuance_halted",
                    step=step.value,
                    code=e.code,
                    reason=e.reason,
                    last_confirmed_step=e.last_confirmed_step,
                    mint=str(self.mint) if self.mint else None,
                )
                raise
            self.records.append(record)
            self.last_confirmed_step = step
            log_event(log, "issuance_step", step=step.value, outcome=record.outcome.value, **record.detail)

        assert self.mint is not None and self.destination_token_account is not None
        return IssuanceResult(
            mint=self.mint,
            destination_owner=self.destination_owner,
            destination_token_account=self.destination_token_account,
            descriptor=require_mint(self.ledger, self.mint),
            steps=tuple(self.records),
        )

    def _current_mint(self) -> MintDescriptor:
        assert self.mint is not None
        return require_mint(self.ledger, self.mint)

    # ---- steps ----

    def _create_mint(self) -> StepRecord:
        step = IssuanceStep.CREATE_MINT
        if self.cfg.resume_mint is not None:
            m = read_mint(self.ledger, self.cfg.resume_mint)
            if m is None or not m.is_initialized:
                raise MintCreationFailed("mint_creation_failed", "resume_mint_not_found", {"mint": str(self.cfg.resume_mint)})
            if m.decimals != self.cfg.decimals:
                raise MintCreationFailed(
                    "mint_creation_failed",
                    "resume_mint_decimals_mismatch",
                    {"mint": str(m.address), "expected": self.cfg.decimals, "actual": m.decimals},
                )
            self.mint = m.address
            return StepRecord(step, StepOutcome.SKIPPED, {"mint": str(m.address), "reason": "resumed"})

        mint_kp = self.mint_keypair or Keypair.generate()
        mint = mint_kp.pubkey
        try:
            lamports = self.ledger.minimum_balance_for_rent_exemption(MINT_ACCOUNT_LEN)
            ixs = [
                create_account(
                    payer=self.payer.pubkey, new_account=mint, lamports=lamports, space=MINT_ACCOUNT_LEN, owner=TOKEN_PROGRAM_ID
                ),
                initialize_mint2(
                    mint=mint,
                    decimals=self.cfg.decimals,
                    mint_authority=self.payer.pubkey,
                    freeze_authority=self.payer.pubkey,
                ),
            ]

            def landed() -> bool:
                m = read_mint(self.ledger, mint)
                return m is not None and m.is_initialized and m.decimals == self.cfg.decimals

            sig = submit_or_reconcile(
                self.ledger, ixs, [self.payer, mint_kp], landed=landed, logger=log, action="create_mint", mint=str(mint)
            )
        except MintlockError as e:
            raise MintCreationFailed(
                "mint_creation_failed",
                e.reason,
                {"mint": str(mint), "cause": e.code, "cause_details": e.details},
            ) from e

        self.mint = mint
        return StepRecord(step, StepOutcome.DONE, {"mint": str(mint), "signature": sig})

    def _provision_destination(self) -> StepRecord:
        assert self.mint is not None
        ata, created = provision_token_account(self.ledger, self.payer, self.destination_owner, self.mint)
        self.destination_token_account = ata
        outcome = StepOutcome.DONE if created else StepOutcome.SKIPPED
        return StepRecord(IssuanceStep.PROVISION_DESTINATION, outcome, {"token_account": str(ata), "owner": str(self.destination_owner)})

    def _mint_supply(self) -> StepRecord:
        step = IssuanceStep.MINT_SUPPLY
        m = self._current_mint()
        if m.supply > 0:
            # Any other supply halts here, ahead of the irreversible revocations.
            if m.supply != self.supply_base_units:
                raise IssuanceVerificationFailed(
                    "verification_failed",
                    "supply_mismatch_before_revoke",
                    {"mint": str(m.address), "expected": str(self.supply_base_units), "actual": str(m.supply)},
                )
            return StepRecord(step, StepOutcome.SKIPPED, {"reason": "supply_present", "supply": str(m.supply)})
        if m.mint_authority is None:
            raise IssuanceVerificationFailed(
                "verification_failed", "supply_zero_and_mint_authority_revoked", {"mint": str(m.address)}
            )
        if m.mint_authority != self.payer.pubkey:
            raise IssuanceVerificationFailed(
                "verification_failed",
                "payer_not_mint_authority",
                {"mint": str(m.address), "mint_authority": str(m.mint_authority), "payer": str(self.payer.pubkey)},
            )

        assert self.destination_token_account is not None
        dest = self.destination_token_account
        ix = mint_to(mint=m.address, destination=dest, authority=self.payer.pubkey, amount=self.supply_base_units)

        def landed() -> bool:
            return self._current_mint().supply == self.supply_base_units

        sig = submit_or_reconcile(
            self.ledger, [ix], [self.payer], landed=landed, logger=log, action="mint_supply", mint=str(m.address)
        )
        return StepRecord(
            step,
            StepOutcome.DONE,
            {"signature": sig, "amount": str(self.supply_base_units), "destination_balance": str(token_balance(self.ledger, dest))},
        )

    def _attach_metadata(self) -> StepRecord:
        step = IssuanceStep.ATTACH_METADATA
        md = self.cfg.metadata
        if not md.enabled:
            return StepRecord(step, StepOutcome.SKIPPED, {"reason": "metadata_not_configured"})
        m = self._current_mint()
        if read_metadata(self.ledger, m.address) is None and m.mint_authority is None:
            raise IssuanceVerificationFailed(
                "verification_failed", "metadata_requires_mint_authority", {"mint": str(m.address)}
            )
        created = attach_metadata(
            self.ledger,
            self.payer,
            m.address,
            name=md.name,
            symbol=md.symbol,
            uri=md.uri,
            update_authority=md.update_authority,
        )
        if not created:
            return StepRecord(step, StepOutcome.SKIPPED, {"reason": "metadata_present"})
        return StepRecord(step, StepOutcome.DONE, {"name": md.name, "symbol": md.symbol})

    def _revoke(self, step: IssuanceStep, authority_type: int) -> StepRecord:
        m = self._current_mint()
        current = m.mint_authority if authority_type == AuthorityType.MINT_TOKENS else m.freeze_authority
        if current is None:
            return StepRecord(step, StepOutcome.SKIPPED, {"reason": "already_revoked"})
        ix = set_authority(account=m.address, current_authority=self.payer.pubkey, authority_type=authority_type, new_authority=None)

        def landed() -> bool:
            now = self._current_mint()
            return (now.mint_authority if authority_type == AuthorityType.MINT_TOKENS else now.freeze_authority) is None

        sig = submit_or_reconcile(self.ledger, [ix], [self.payer], landed=landed, logger=log, action=step.value, mint=str(m.address))
        return StepRecord(step, StepOutcome.DONE, {"signature": sig})

    def _revoke_mint_authority(self) -> StepRecord:
        return self._revoke(IssuanceStep.REVOKE_MINT_AUTHORITY, AuthorityType.MINT_TOKENS)

    def _revoke_freeze_authority(self) -> StepRecord:
        if not self.cfg.revoke_freeze_authority:
            return StepRecord(IssuanceStep.REVOKE_FREEZE_AUTHORITY, StepOutcome.SKIPPED, {"reason": "policy_disabled"})
        return self._revoke(IssuanceStep.REVOKE_FREEZE_AUTHORITY, AuthorityType.FREEZE_ACCOUNT)

    def _verify(self) -> StepRecord:
        m = self._current_mint()
        problems: Json = {}
        if m.supply != self.supply_base_units:
            problems["supply"] = {"expected": str(self.supply_base_units), "actual": str(m.supply)}
        if m.decimals != self.cfg.decimals:
            problems["decimals"] = {"expected": self.cfg.decimals, "actual": m.decimals}
        if m.mint_authority is not None:
            problems["mint_authority"] = {"expected": None, "actual": str(m.mint_authority)}
        if self.cfg.revoke_freeze_authority:
            if m.freeze_authority is not None:
                problems["freeze_authority"] = {"expected": None, "actual": str(m.freeze_authority)}
        elif m.freeze_authority != self.payer.pubkey:
            actual = str(m.freeze_authority) if m.freeze_authority else None
            problems["freeze_authority"] = {"expected": str(self.payer.pubkey), "actual": actual}
        if self.cfg.metadata.enabled:
            rec = read_metadata(self.ledger, m.address)
            if rec is None:
                problems["metadata"] = {"expected": "present", "actual": None}
        if problems:
            raise IssuanceVerificationFailed("verification_failed", "ledger_state_mismatch", {"mint": str(m.address), **problems})
        return StepRecord(
            IssuanceStep.VERIFY,
            StepOutcome.DONE,
            {"mint": str(m.address), "supply": str(m.supply), "decimals": m.decimals},
        )
