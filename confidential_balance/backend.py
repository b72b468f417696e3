"""
Proof backend contract.

Four proof kinds gate the state-changing operations on a confidential
store.  Each prover takes the operation's secret and public inputs and
returns the new ciphertext(s) together with the proof bytes that must
accompany them on the ledger; each verifier takes the public inputs and
the proof and answers accept/reject.

Proof construction is CPU-bound and can take a while, so backends run
provers through ``submit``, which hands back a ``ProofTask``.  A task can
be awaited, blocked on, cancelled, or given a completion callback; the
result is the same whichever way it is consumed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, Tuple, TypeVar

from .chunked import ConfidentialBalance
from .keys import DecryptionKey, EncryptionKey

logger = logging.getLogger("confidential_balance.backend")

T = TypeVar("T")
ProgressCallback = Callable[[str], None]


def proof_context(sender: str, token: str) -> bytes:
    """Bytes binding a proof to the sending account and the token."""
    return f"{sender.lower()}|{token.lower()}".encode()


# ── proof bundles ───────────────────────────────────────────────────────
@dataclass(frozen=True)
class WithdrawProof:
    new_balance: ConfidentialBalance
    sigma_proof: bytes
    range_proof: bytes


@dataclass(frozen=True)
class TransferProof:
    """
    Output of a transfer proof.

    ``recipient_amount`` and every entry of ``auditor_amounts`` encrypt the
    same amount chunks and share their C components; only the D handles
    differ per key.
    """

    new_balance: ConfidentialBalance
    recipient_amount: ConfidentialBalance
    auditor_amounts: Tuple[ConfidentialBalance, ...]
    sigma_proof: bytes
    range_proof_new_balance: bytes
    range_proof_amount: bytes

    def auditor_amounts_bytes(self) -> bytes:
        return b"".join(a.to_bytes() for a in self.auditor_amounts)


@dataclass(frozen=True)
class NormalizationProof:
    new_balance: ConfidentialBalance
    sigma_proof: bytes
    range_proof: bytes


@dataclass(frozen=True)
class KeyRotationProof:
    new_balance: ConfidentialBalance
    sigma_proof: bytes
    range_proof: bytes


# ── long-running proof handle ───────────────────────────────────────────
class ProofTask(Generic[T]):
    """
    Handle on a proof computed in the background.

    ``await task`` and ``task.result(timeout)`` give the same value;
    ``cancel()`` stops the prover at its next stage boundary if it has
    already started.
    """

    def __init__(self, future: "Future[T]", cancel_event: threading.Event, label: str) -> None:
        self._future = future
        self._cancel_event = cancel_event
        self.label = label

    def result(self, timeout: Optional[float] = None) -> T:
        return self._future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout)

    def cancel(self) -> bool:
        if self._future.done():
            return False
        self._cancel_event.set()
        self._future.cancel()
        return True

    def cancelled(self) -> bool:
        if self._future.cancelled():
            return True
        # stopped cooperatively after the prover had started
        return self._future.done() and isinstance(self._future.exception(), CancelledError)

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, fn: Callable[["ProofTask[T]"], Any]) -> None:
        self._future.add_done_callback(lambda _f: fn(self))

    def __await__(self):
        return asyncio.wrap_future(self._future).__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "running"
        return f"ProofTask({self.label}, {state})"


# ── backend interface ───────────────────────────────────────────────────
class ProofBackend(ABC):
    """
    Abstract prover/verifier for the four proof kinds.

    ``context`` binds a proof to the transaction it travels with (sender
    and token); prover and verifier must agree on it.
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    # provers ----------------------------------------------------------------
    @abstractmethod
    def prove_withdraw(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        amount: int,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> WithdrawProof:
        ...

    @abstractmethod
    def prove_transfer(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        amount: int,
        recipient_key: EncryptionKey,
        auditor_keys: Sequence[EncryptionKey],
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> TransferProof:
        ...

    @abstractmethod
    def prove_normalization(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        plaintext: int,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> NormalizationProof:
        ...

    @abstractmethod
    def prove_key_rotation(
        self,
        old_key: DecryptionKey,
        new_key: DecryptionKey,
        balance: ConfidentialBalance,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> KeyRotationProof:
        ...

    # verifiers --------------------------------------------------------------
    @abstractmethod
    def verify_withdraw(
        self,
        encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        amount: int,
        proof: WithdrawProof,
        *,
        context: bytes = b"",
    ) -> bool:
        ...

    @abstractmethod
    def verify_transfer(
        self,
        encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        recipient_key: EncryptionKey,
        auditor_keys: Sequence[EncryptionKey],
        proof: TransferProof,
        *,
        context: bytes = b"",
    ) -> bool:
        ...

    @abstractmethod
    def verify_normalization(
        self,
        encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        proof: NormalizationProof,
        *,
        context: bytes = b"",
    ) -> bool:
        ...

    @abstractmethod
    def verify_key_rotation(
        self,
        old_encryption_key: EncryptionKey,
        new_encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        proof: KeyRotationProof,
        *,
        context: bytes = b"",
    ) -> bool:
        ...

    # background execution ---------------------------------------------------
    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="confbal-prover",
                )
            return self._executor

    def submit(
        self,
        method: Callable[..., T],
        *args: Any,
        on_progress: Optional[ProgressCallback] = None,
        **kwargs: Any,
    ) -> ProofTask[T]:
        """
        Run ``method`` (one of this backend's provers) on the worker pool.

        ``on_progress`` receives stage names as the prover advances.  The
        prover's ``progress`` hook also checks for cancellation, so a
        cancelled task stops at the next stage.
        """
        cancel_event = threading.Event()
        label = getattr(method, "__name__", "proof")

        def _progress(stage: str) -> None:
            if cancel_event.is_set():
                raise CancelledError(f"{label} cancelled at {stage}")
            if on_progress is not None:
                on_progress(stage)

        future = self._get_executor().submit(method, *args, progress=_progress, **kwargs)
        logger.debug("submitted %s to prover pool", label)
        return ProofTask(future, cancel_event, label)

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True, cancel_futures=True)
                self._executor = None

    def __enter__(self) -> ProofBackend:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
