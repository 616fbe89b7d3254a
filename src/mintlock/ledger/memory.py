# src/mintlock/ledger/memory.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import base58

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import LedgerConfirmationTimeout, LedgerRejected
from mintlock.ledger.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_CLOCK_ID,
    SYSVAR_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from mintlock.ledger.instructions import Instruction
from mintlock.ledger.layouts import AccountInfo, Clock, LayoutError, encode_clock
from mintlock.ledger.programs import (
    ExecContext,
    ProgramError,
    make_timelock_processor,
    process_associated_token,
    process_metadata,
    process_system,
    process_token,
)
from mintlock.ledger.wire import compile_message, sign_transaction
from mintlock.structured_logging import log_event

log = logging.getLogger("mintlock.ledger.memory")

Processor = Callable[[ExecContext, Instruction], None]

LAMPORTS_PER_SOL = 1_000_000_000
FEE_LAMPORTS_PER_SIGNATURE = 5_000


@dataclass(frozen=True)
class TxRecord:
    signature: str
    slot: int
    programs: tuple[str, ...]


class MemoryLedger:
    """
    In-process reference ledger.

    - Executes system, token, associated-token, metadata and timelock rules
    - One transaction is atomic: every instruction applies or none does
    - The clock is owned by the ledger; callers read it via the clock sysvar
    - Confirmation timeouts can be injected to exercise ambiguous outcomes
    """

    def __init__(self, *, unix_timestamp: int = 1_700_000_000, timelock_program_id: Optional[Pubkey] = None) -> None:
        self._accounts: Dict[Pubkey, AccountInfo] = {}
        self._programs: Dict[Pubkey, Processor] = {
            SYSTEM_PROGRAM_ID: process_system,
            TOKEN_PROGRAM_ID: process_token,
            ASSOCIATED_TOKEN_PROGRAM_ID: process_associated_token,
            METADATA_PROGRAM_ID: process_metadata,
        }
        self._slot = 1
        self._unix_timestamp = int(unix_timestamp)
        self._pending_timeouts: List[bool] = []
        self.transactions: List[TxRecord] = []
        if timelock_program_id is not None:
            self.deploy_timelock(timelock_program_id)
        self._write_clock()

    # ---- harness controls ----

    def deploy_timelock(self, program_id: Pubkey) -> None:
        self._programs[program_id] = make_timelock_processor(program_id)
        self._accounts[program_id] = AccountInfo(1, Pubkey(bytes(32)), b"", executable=True)

    def airdrop(self, pubkey: Pubkey, lamports: int = 10 * LAMPORTS_PER_SOL) -> None:
        cur = self._accounts.get(pubkey)
        if cur is None:
            self._accounts[pubkey] = AccountInfo(lamports, SYSTEM_PROGRAM_ID, b"")
        else:
            self._accounts[pubkey] = AccountInfo(cur.lamports + lamports, cur.owner, cur.data, cur.executable)

    def set_account(self, pubkey: Pubkey, info: Optional[AccountInfo]) -> None:
        """Write (or with None, remove) an account outside any transaction."""
        if info is None:
            self._accounts.pop(pubkey, None)
        else:
            self._accounts[pubkey] = info

    def set_time(self, unix_timestamp: int) -> None:
        self._unix_timestamp = int(unix_timestamp)
        self._write_clock()

    def advance_time(self, seconds: int) -> None:
        self.set_time(self._unix_timestamp + int(seconds))

    def timeout_next(self, *, applied: bool) -> None:
        """Make the next submission time out. `applied` picks whether it landed anyway."""
        self._pending_timeouts.append(bool(applied))

    @property
    def unix_timestamp(self) -> int:
        return self._unix_timestamp

    def _write_clock(self) -> None:
        clock = Clock(
            slot=self._slot,
            epoch_start_timestamp=self._unix_timestamp,
            epoch=0,
            leader_schedule_epoch=1,
            unix_timestamp=self._unix_timestamp,
        )
        self._accounts[SYSVAR_CLOCK_ID] = AccountInfo(1, SYSVAR_PROGRAM_ID, encode_clock(clock))

    def _blockhash(self) -> bytes:
        return hashlib.sha256(b"mintlock-memory-blockhash:" + str(self._slot).encode("ascii")).digest()

    # ---- LedgerClient ----

    def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        return self._accounts.get(address)

    def get_balance(self, address: Pubkey) -> int:
        acct = self._accounts.get(address)
        return acct.lamports if acct is not None else 0

    def minimum_balance_for_rent_exemption(self, size: int) -> int:
        # (account overhead + data) * lamports-per-byte-year * 2 years
        return (128 + int(size)) * 3480 * 2

    def submit_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        if not instructions:
            raise LedgerRejected("rejected", "empty_transaction")
        if not signers:
            raise LedgerRejected("rejected", "missing_fee_payer")

        fee_payer = signers[0].pubkey
        message = compile_message(instructions, fee_payer, self._blockhash())
        try:
            _, sigs = sign_transaction(message, signers)
        except ValueError as e:
            raise LedgerRejected("rejected", "signature_failure", {"error": str(e)}) from e
        signature = base58.b58encode(sigs[0]).decode("ascii")

        timeout = self._pending_timeouts.pop(0) if self._pending_timeouts else None
        if timeout is False:
            log_event(log, "memory_tx_dropped", signature=signature)
            raise LedgerConfirmationTimeout("timeout", "confirmation_timeout", {"signature": signature})

        working = dict(self._accounts)
        fee = FEE_LAMPORTS_PER_SIGNATURE * message.num_required_signatures
        payer_acct = working.get(fee_payer)
        if payer_acct is None or payer_acct.lamports < fee:
            raise LedgerRejected("rejected", "insufficient_funds_for_fee", {"fee_payer": str(fee_payer), "fee": fee})
        working[fee_payer] = AccountInfo(payer_acct.lamports - fee, payer_acct.owner, payer_acct.data, payer_acct.executable)

        ctx = ExecContext(
            accounts=working,
            signers={kp.pubkey for kp in signers},
            unix_timestamp=self._unix_timestamp,
            rent=self.minimum_balance_for_rent_exemption,
        )
        for i, ix in enumerate(instructions):
            processor = self._programs.get(ix.program_id)
            if processor is None:
                raise LedgerRejected("rejected", "program_not_found", {"instruction_index": i, "program_id": str(ix.program_id)})
            try:
                processor(ctx, ix)
            except LayoutError as e:
                raise LedgerRejected(
                    "rejected", "program_error", {"instruction_index": i, "program_error": "InvalidAccountData", "error": str(e)}
                ) from e
            except ProgramError as e:
                details = {"instruction_index": i, "program_id": str(ix.program_id), "program_error": e.name}
                if e.custom is not None:
                    details["custom"] = e.custom
                raise LedgerRejected("rejected", "program_error", details) from e

        self._accounts = working
        self._slot += 1
        self._write_clock()
        self.transactions.append(TxRecord(signature, self._slot, tuple(str(ix.program_id) for ix in instructions)))

        if timeout is True:
            log_event(log, "memory_tx_unconfirmed", signature=signature)
            raise LedgerConfirmationTimeout("timeout", "confirmation_timeout", {"signature": signature})
        return signature
