"""
Exception hierarchy for confidential balance operations.

Errors fall into four families that callers handle differently:

- ``ValidationError``: bad local input (key length, chunk arity, amount
  range, configuration).  Raised before any network or proof cost is paid
  and never worth retrying.
- ``DecryptionMismatch`` / ``ProofConstructionError``: the prover could not
  produce a proof (insufficient balance, wrong plaintext, unsolvable chunk).
- ``LedgerError``: the ledger rejected or did not confirm a transaction.
  The store may have changed underneath, so these are surfaced as-is.
- ``SafeFlowError``: a multi-step flow could not start or stopped halfway.

No exception message ever carries decryption-key material.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .payload import TransactionResult


class ConfidentialBalanceError(Exception):
    """Root of every error raised by this package."""


# ── local validation ────────────────────────────────────────────────────
class ValidationError(ConfidentialBalanceError, ValueError):
    """Local input rejected before any ledger or proof work."""


class RangeError(ValidationError):
    """Amount is negative or not representable in the chunk layout."""


class InvalidKeyLength(ValidationError):
    """Key bytes do not have the protocol's fixed length."""

    def __init__(self, kind: str, expected: int, got: int) -> None:
        super().__init__(f"{kind} must be {expected} bytes, got {got}")
        self.kind = kind
        self.expected = expected
        self.got = got


class InvalidKeyMaterial(ValidationError):
    """Key has the right length but is not a valid scalar or point."""


class ChunkArityMismatch(ValidationError):
    """Ciphertext chunk count differs from the protocol arity."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"expected {expected} chunks, got {got}")
        self.expected = expected
        self.got = got


class InvalidEncoding(ValidationError):
    """Bytes do not decode to a group element, scalar or proof."""


class ConfigError(ValidationError):
    """Configuration value is missing or inconsistent."""


# ── decryption / proving ────────────────────────────────────────────────
class DecryptionMismatch(ConfidentialBalanceError):
    """A chunk's bounded discrete-log search found no solution."""

    def __init__(self, chunk_index: int, max_bits: int) -> None:
        super().__init__(
            f"chunk {chunk_index} does not decrypt to a value below 2^{max_bits}"
        )
        self.chunk_index = chunk_index
        self.max_bits = max_bits


class ProofConstructionError(ConfidentialBalanceError):
    """The backend could not build (or locally verify) a proof."""


class InsufficientBalance(ProofConstructionError):
    """Requested amount exceeds the decrypted balance."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"insufficient balance: requested {requested}, available {available}"
        )
        self.requested = requested
        self.available = available


# ── ledger ──────────────────────────────────────────────────────────────
class LedgerError(ConfidentialBalanceError):
    """Transport or execution failure reported by the ledger."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class StoreNotFound(LedgerError):
    """No confidential store registered for (account, token)."""


class TransactionFailed(LedgerError):
    """Transaction committed but its execution was aborted."""

    def __init__(self, result: "TransactionResult") -> None:
        super().__init__(
            f"transaction {result.hash} failed: {result.vm_status}"
        )
        self.result = result


class CommitTimeout(LedgerError):
    """
    Commitment was not observed within the deadline.

    The outcome is indeterminate: the transaction may still commit.  Callers
    must re-probe store state before resuming.
    """

    def __init__(self, txn_hash: str, timeout: float) -> None:
        super().__init__(
            f"transaction {txn_hash} not committed within {timeout:.1f}s"
        )
        self.txn_hash = txn_hash
        self.timeout = timeout


# ── multi-step flows ────────────────────────────────────────────────────
class SafeFlowError(ConfidentialBalanceError):
    """A safe flow could not be started or completed."""


class MissingDecryptionKey(SafeFlowError):
    """The store needs normalization but no decryption key was supplied."""


class PartialFlowError(SafeFlowError):
    """
    An earlier step committed and a later one failed.

    The store is left valid but intermediate; calling the same safe flow
    again resumes from a fresh state probe.
    """

    def __init__(
        self,
        message: str,
        committed: Sequence["TransactionResult"],
        cause: BaseException,
    ) -> None:
        super().__init__(message)
        self.committed: List["TransactionResult"] = list(committed)
        self.cause = cause
