from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass
class MintlockError(Exception):
    """Canonical error type for issuance and vault failures.

    `last_confirmed_step` is filled in by the pipelines before re-raising so an
    operator can resume from the right point.
    """

    code: str
    reason: str
    details: Optional[Json] = None
    last_confirmed_step: Optional[str] = None

    def __str__(self) -> str:
        out = f"{self.code}:{self.reason}"
        if self.details:
            out = f"{out}:{self.details}"
        return out


@dataclass
class InvalidAmount(MintlockError):
    pass


@dataclass
class InvalidConfig(MintlockError):
    pass


@dataclass
class AddressDerivationExhausted(MintlockError):
    pass


@dataclass
class AccountOwnerMismatch(MintlockError):
    pass


@dataclass
class AccountNotFound(MintlockError):
    pass


@dataclass
class MintCreationFailed(MintlockError):
    """Fatal. Re-running would create a second, different mint."""


@dataclass
class IssuanceVerificationFailed(MintlockError):
    """Fatal. Ledger state does not match the issuance plan."""


@dataclass
class MetadataAlreadyExists(MintlockError):
    pass


@dataclass
class AlreadyInitialized(MintlockError):
    pass


@dataclass
class VaultNotInitialized(MintlockError):
    pass


@dataclass
class ReleaseInPast(MintlockError):
    pass


@dataclass
class AlreadyReleased(MintlockError):
    pass


@dataclass
class NothingToRelease(AlreadyReleased):
    pass


@dataclass
class ReleaseTooEarly(MintlockError):
    pass


@dataclass
class LedgerConfirmationTimeout(MintlockError):
    """Outcome unknown: re-query ledger state before any retry."""


@dataclass
class LedgerRejected(MintlockError):
    """The ledger refused the mutation (program error, funds, signatures)."""

    @property
    def program_error(self) -> Optional[str]:
        d = self.details or {}
        v = d.get("program_error")
        return str(v) if v is not None else None


@dataclass
class LedgerUnavailable(MintlockError):
    pass
