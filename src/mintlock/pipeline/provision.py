# src/mintlock/pipeline/provision.py
from __future__ import annotations

import logging
from typing import Optional, Tuple

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import AccountOwnerMismatch, LedgerRejected
from mintlock.ledger.client import LedgerClient
from mintlock.ledger.constants import TOKEN_PROGRAM_ID
from mintlock.ledger.derive import associated_token_address
from mintlock.ledger.instructions import create_associated_token_account_idempotent
from mintlock.ledger.layouts import TokenAccount, decode_token_account
from mintlock.pipeline.submit import submit_or_reconcile

log = logging.getLogger("mintlock.pipeline.provision")


def existing_token_account(ledger: LedgerClient, address: Pubkey, owner: Pubkey, mint: Pubkey) -> Optional[TokenAccount]:
    """Read the account at `address`. None if absent; a conflicting account raises."""
    info = ledger.get_account_info(address)
    if info is None:
        return None
    if info.owner != TOKEN_PROGRAM_ID:
        raise AccountOwnerMismatch(
            "owner_mismatch",
            "not_a_token_account",
            {"address": str(address), "program_owner": str(info.owner)},
        )
    acct = decode_token_account(address, info.data)
    if acct.owner != owner or acct.mint != mint:
        raise AccountOwnerMismatch(
            "owner_mismatch",
            "token_account_conflict",
            {
                "address": str(address),
                "expected_owner": str(owner),
                "actual_owner": str(acct.owner),
                "expected_mint": str(mint),
                "actual_mint": str(acct.mint),
            },
        )
    return acct


def provision_token_account(ledger: LedgerClient, payer: Keypair, owner: Pubkey, mint: Pubkey) -> Tuple[Pubkey, bool]:
    """Return (associated token account, created_now)."""
    ata = associated_token_address(owner, mint)
    if existing_token_account(ledger, ata, owner, mint) is not None:
        return ata, False

    ix = create_associated_token_account_idempotent(payer=payer.pubkey, owner=owner, mint=mint)
    try:
        submit_or_reconcile(
            ledger,
            [ix],
            [payer],
            landed=lambda: existing_token_account(ledger, ata, owner, mint) is not None,
            logger=log,
            action="create_token_account",
            address=str(ata),
            owner=str(owner),
            mint=str(mint),
        )
    except LedgerRejected as e:
        if e.program_error == "IllegalOwner":
            raise AccountOwnerMismatch("owner_mismatch", "token_account_conflict", {"address": str(ata)}) from e
        raise
    return ata, True


def ensure_token_account(ledger: LedgerClient, payer: Keypair, owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Make sure `owner` has an associated token account for `mint`.

    Owners may be program-derived (off-curve), e.g. a vault authority.
    """
    ata, _ = provision_token_account(ledger, payer, owner, mint)
    return ata
