# src/mintlock/ledger/rpc.py
from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional, Sequence

import base58
from pydantic import ValidationError

from mintlock.crypto.keys import Keypair
from mintlock.crypto.pubkey import Pubkey
from mintlock.errors import LedgerConfirmationTimeout, LedgerRejected, LedgerUnavailable
from mintlock.ledger.constants import COMMITMENTS, TOKEN_PROGRAM_ID
from mintlock.ledger.instructions import TIMELOCK_ERRORS, Instruction
from mintlock.ledger.layouts import AccountInfo
from mintlock.ledger.rpc_schemas import (
    AccountInfoResult,
    BalanceResult,
    BlockhashResult,
    RpcEnvelope,
    SignatureStatusesResult,
)
from mintlock.ledger.wire import compile_message, sign_transaction
from mintlock.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("mintlock.ledger.rpc")

# Token program custom error codes, by enum position.
TOKEN_ERRORS: Dict[int, str] = {
    0: "NotRentExempt",
    1: "InsufficientFunds",
    2: "InvalidMint",
    3: "MintMismatch",
    4: "OwnerMismatch",
    5: "FixedSupply",
    6: "AlreadyInUse",
    9: "UninitializedState",
    12: "InvalidInstruction",
    14: "Overflow",
    15: "AuthorityTypeNotSupported",
    16: "MintCannotFreeze",
    17: "AccountFrozen",
    18: "MintDecimalsMismatch",
}

# Framework errors the timelock program can raise before its own checks run.
ANCHOR_FRAMEWORK_ERRORS: Dict[int, str] = {
    2001: "ConstraintHasOne",
    2003: "ConstraintRaw",
    2006: "ConstraintSeeds",
    3012: "AccountNotInitialized",
}


def _http_json(method: str, url: str, body: Optional[Json] = None, timeout_s: float = 10.0) -> Json:
    method = method.upper().strip()
    headers = {"Content-Type": "application/json"}
    data: Optional[bytes] = None

    if body is not None:
        data = json.dumps(body).encode("utf-8")

    req = urllib.request.Request(url, data=data, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError:
            return {"ok": False, "error": "bad_json", "raw": raw}
    except urllib.error.HTTPError as e:
        try:
            raw = e.read().decode("utf-8", errors="replace")
        except OSError:
            raw = ""
        try:
            return json.loads(raw)
        except ValueError:
            pass
        return {"ok": False, "error": "http_error", "status": int(getattr(e, "code", 0) or 0), "raw": raw}
    except urllib.error.URLError as e:
        return {"ok": False, "error": "url_error", "reason": str(getattr(e, "reason", e))}
    except (TimeoutError, OSError) as e:
        return {"ok": False, "error": "transport_error", "reason": str(e)}


def _is_transport_failure(resp: Json) -> bool:
    return resp.get("ok") is False and isinstance(resp.get("error"), str)


def program_error_name(program_id: Optional[Pubkey], code: int) -> str:
    if program_id == TOKEN_PROGRAM_ID:
        return TOKEN_ERRORS.get(code, f"Custom({code})")
    if code in TIMELOCK_ERRORS:
        return TIMELOCK_ERRORS[code]
    return ANCHOR_FRAMEWORK_ERRORS.get(code, f"Custom({code})")


def map_transaction_error(err: Any, instructions: Sequence[Instruction]) -> LedgerRejected:
    """Turn a node `err` value into LedgerRejected.

    Shapes seen on the wire:
      {"InstructionError": [index, {"Custom": n}]}
      {"InstructionError": [index, "InvalidAccountData"]}
      "AccountNotFound" / {"InsufficientFundsForRent": {...}}
    """
    details: Json = {"err": err}
    if isinstance(err, dict) and "InstructionError" in err:
        pair = err.get("InstructionError") or []
        index = int(pair[0]) if len(pair) > 0 else -1
        inner = pair[1] if len(pair) > 1 else None
        program_id = instructions[index].program_id if 0 <= index < len(instructions) else None
        details["instruction_index"] = index
        if program_id is not None:
            details["program_id"] = str(program_id)
        if isinstance(inner, dict) and "Custom" in inner:
            code = int(inner["Custom"])
            details["custom"] = code
            details["program_error"] = program_error_name(program_id, code)
        elif isinstance(inner, dict) and inner:
            details["program_error"] = str(next(iter(inner.keys())))
        elif inner is not None:
            details["program_error"] = str(inner)
        return LedgerRejected("rejected", "program_error", details)
    if isinstance(err, dict) and err:
        return LedgerRejected("rejected", str(next(iter(err.keys()))), details)
    return LedgerRejected("rejected", str(err), details)


class RpcLedger:
    """LedgerClient over HTTP JSON-RPC."""

    def __init__(
        self,
        url: str,
        *,
        commitment: str = "confirmed",
        confirm_timeout_s: float = 60.0,
        poll_interval_s: float = 0.5,
        request_timeout_s: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if commitment not in COMMITMENTS:
            raise ValueError(f"commitment must be one of {COMMITMENTS}; got: {commitment!r}")
        self.url = url
        self.commitment = commitment
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.poll_interval_s = float(poll_interval_s)
        self.request_timeout_s = float(request_timeout_s)
        self._sleep = sleep
        self._clock = clock
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: List[Any]) -> RpcEnvelope:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = _http_json("POST", self.url, body, timeout_s=self.request_timeout_s)
        if _is_transport_failure(resp):
            raise LedgerUnavailable("unavailable", str(resp.get("error")), {"method": method, **resp})
        try:
            return RpcEnvelope.model_validate(resp)
        except ValidationError as e:
            raise LedgerUnavailable("unavailable", "bad_response", {"method": method, "error": str(e)}) from e

    def _result(self, method: str, params: List[Any]) -> Any:
        env = self._rpc(method, params)
        if env.error is not None:
            raise LedgerUnavailable(
                "unavailable", "rpc_error", {"method": method, "code": env.error.code, "message": env.error.message}
            )
        return env.result

    # ---- reads ----

    def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        raw = self._result("getAccountInfo", [str(address), {"encoding": "base64", "commitment": self.commitment}])
        try:
            res = AccountInfoResult.model_validate(raw)
        except ValidationError as e:
            raise LedgerUnavailable("unavailable", "bad_account_info", {"address": str(address), "error": str(e)}) from e
        if res.value is None:
            return None
        return AccountInfo(
            lamports=res.value.lamports,
            owner=Pubkey.from_string(res.value.owner),
            data=base64.b64decode(res.value.data[0]),
            executable=res.value.executable,
        )

    def get_balance(self, address: Pubkey) -> int:
        raw = self._result("getBalance", [str(address), {"commitment": self.commitment}])
        try:
            return BalanceResult.model_validate(raw).value
        except ValidationError as e:
            raise LedgerUnavailable("unavailable", "bad_balance", {"address": str(address), "error": str(e)}) from e

    def minimum_balance_for_rent_exemption(self, size: int) -> int:
        raw = self._result("getMinimumBalanceForRentExemption", [int(size)])
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise LedgerUnavailable("unavailable", "bad_rent_exemption", {"size": size, "result": raw})
        return raw

    def latest_blockhash(self) -> bytes:
        raw = self._result("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            value = BlockhashResult.model_validate(raw).value
        except ValidationError as e:
            raise LedgerUnavailable("unavailable", "bad_blockhash", {"error": str(e)}) from e
        raw_hash = base58.b58decode(value.blockhash)
        if len(raw_hash) != 32:
            raise LedgerUnavailable("unavailable", "bad_blockhash", {"blockhash": value.blockhash})
        return raw_hash

    # ---- writes ----

    def submit_and_confirm(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        if not instructions:
            raise LedgerRejected("rejected", "empty_transaction")
        if not signers:
            raise LedgerRejected("rejected", "missing_fee_payer")

        message = compile_message(instructions, signers[0].pubkey, self.latest_blockhash())
        try:
            wire, _ = sign_transaction(message, signers)
        except ValueError as e:
            raise LedgerRejected("rejected", "signature_failure", {"error": str(e)}) from e

        params = [
            base64.b64encode(wire).decode("ascii"),
            {"encoding": "base64", "preflightCommitment": self.commitment},
        ]
        try:
            env = self._rpc("sendTransaction", params)
        except LedgerUnavailable as e:
            # The node may have accepted it before the connection dropped.
            raise LedgerConfirmationTimeout("timeout", "send_outcome_unknown", e.details) from e

        if env.error is not None:
            data = env.error.data if isinstance(env.error.data, dict) else {}
            if data.get("err") is not None:
                raise map_transaction_error(data["err"], instructions)
            raise LedgerRejected(
                "rejected", "send_failed", {"code": env.error.code, "message": env.error.message}
            )

        signature = str(env.result)
        log_event(log, "rpc_tx_sent", signature=signature, instructions=len(instructions))
        self._await_confirmation(signature, instructions)
        return signature

    def _await_confirmation(self, signature: str, instructions: Sequence[Instruction]) -> None:
        want = COMMITMENTS.index(self.commitment)
        deadline = self._clock() + self.confirm_timeout_s
        while True:
            try:
                raw = self._result("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
                statuses = SignatureStatusesResult.model_validate(raw).value
            except (LedgerUnavailable, ValidationError) as e:
                log_event(log, "rpc_status_poll_failed", signature=signature, error=str(e))
                statuses = []

            status = statuses[0] if statuses else None
            if status is not None:
                if status.err is not None:
                    raise map_transaction_error(status.err, instructions)
                level = status.confirmationStatus or ""
                if level in COMMITMENTS and COMMITMENTS.index(level) >= want:
                    log_event(log, "rpc_tx_confirmed", signature=signature, commitment=level, slot=status.slot)
                    return

            if self._clock() >= deadline:
                raise LedgerConfirmationTimeout(
                    "timeout",
                    "confirmation_timeout",
                    {"signature": signature, "commitment": self.commitment, "timeout_s": self.confirm_timeout_s},
                )
            self._sleep(self.poll_interval_s)
