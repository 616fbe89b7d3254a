# src/mintlock/pipeline/submit.py
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence

from mintlock.crypto.keys import Keypair
from mintlock.errors import LedgerConfirmationTimeout
from mintlock.ledger.client import LedgerClient
from mintlock.ledger.instructions import Instruction
from mintlock.structured_logging import log_event


def unique_signers(*signers: Optional[Keypair]) -> List[Keypair]:
    """First signer pays fees. Duplicates and None are dropped, order kept."""
    out: List[Keypair] = []
    seen = set()
    for kp in signers:
        if kp is None or kp.pubkey in seen:
            continue
        seen.add(kp.pubkey)
        out.append(kp)
    return out


def submit_or_reconcile(
    ledger: LedgerClient,
    instructions: Sequence[Instruction],
    signers: Sequence[Keypair],
    *,
    landed: Callable[[], bool],
    logger: logging.Logger,
    action: str,
    **fields: Any,
) -> Optional[str]:
    """Submit once. On a confirmation timeout, re-read instead of resubmitting.

    Returns the signature, or None when the timeout was resolved by observing
    the effect on the ledger. If the effect is not visible the timeout is
    re-raised unchanged.
    """
    try:
        sig = ledger.submit_and_confirm(list(instructions), list(signers))
    except LedgerConfirmationTimeout as e:
        if landed():
            log_event(logger, "confirmation_timeout_reconciled", action=action, details=e.details, **fields)
            return None
        log_event(logger, "confirmation_timeout_unresolved", action=action, details=e.details, **fields)
        raise
    log_event(logger, "tx_confirmed", action=action, signature=sig, **fields)
    return sig
