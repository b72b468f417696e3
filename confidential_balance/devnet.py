"""
In-memory ledger running the confidential asset module.

``LocalLedger`` is a ``LedgerClient`` that executes entry functions itself,
verifying every proof with a ``ProofBackend``.  It keeps per-account
sequence numbers, a mempool ordered by sequence number, plaintext fungible
balances and confidential stores, so flows can be exercised end to end
without a node.

Module rules enforced on execution:

- a store is registered once per (account, token);
- deposits credit plaintext chunks (zero randomness) to the recipient's
  pending balance;
- a frozen store rejects outbound withdraw/transfer and inbound
  deposit/transfer;
- withdraw, transfer and rollover require a normalized store;
- rollover adds pending into actual, and clears ``normalized`` when the
  pending balance was not empty;
- normalize, withdraw, transfer and key rotation leave the store normalized;
- key rotation requires an empty pending balance;
- a transaction that aborts still consumes its sequence number.

With ``auto_commit=False`` submitted transactions sit in the mempool until
``commit()`` is called, which is how tests observe the commitment boundary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .backend import (
    KeyRotationProof,
    NormalizationProof,
    ProofBackend,
    TransferProof,
    WithdrawProof,
    proof_context,
)
from .chunked import AMOUNT_CHUNKS, BALANCE_CHUNKS, ConfidentialBalance, check_amount
from .config import NetworkConfig
from .curve import POINT_BYTES
from .elgamal import CHUNK_CIPHERTEXT_LENGTH
from .errors import CommitTimeout, LedgerError, StoreNotFound, ValidationError
from .keys import EncryptionKey
from .ledger import LedgerClient
from .payload import Transaction, TransactionResult, ViewRequest
from .prover import ReferenceProofBackend

logger = logging.getLogger("confidential_balance.devnet")

# ── abort codes ─────────────────────────────────────────────────────────
E_ALREADY_REGISTERED = "E_ALREADY_REGISTERED"
E_STORE_NOT_FOUND = "E_STORE_NOT_FOUND"
E_FROZEN = "E_FROZEN"
E_NOT_NORMALIZED = "E_NOT_NORMALIZED"
E_PENDING_NOT_EMPTY = "E_PENDING_NOT_EMPTY"
E_INSUFFICIENT_FUNDS = "E_INSUFFICIENT_FUNDS"
E_INVALID_PROOF = "E_INVALID_PROOF"
E_AUDITOR_MISMATCH = "E_AUDITOR_MISMATCH"
E_INVALID_ARGUMENT = "E_INVALID_ARGUMENT"
E_FUNCTION_NOT_FOUND = "E_FUNCTION_NOT_FOUND"

EXECUTED = "Executed successfully"

_ARITY = {
    "register": 2,
    "deposit_to": 3,
    "withdraw_to": 6,
    "rollover_pending_balance": 1,
    "rollover_pending_balance_and_freeze": 1,
    "normalize": 4,
    "confidential_transfer": 9,
    "rotate_encryption_key": 5,
    "rotate_encryption_key_and_unfreeze": 5,
}


class _Abort(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _balance_json(balance: ConfidentialBalance) -> Dict[str, Any]:
    return {
        "chunks": [
            {"left": {"data": _hex(c.C.to_bytes())}, "right": {"data": _hex(c.D.to_bytes())}}
            for c in balance.chunks
        ]
    }


def _option_json(key: Optional[EncryptionKey]) -> Dict[str, Any]:
    return {"vec": [key.hex()] if key is not None else []}


def _parse_amount(raw: Any) -> int:
    try:
        amount = int(raw)
    except (TypeError, ValueError):
        raise _Abort(E_INVALID_ARGUMENT) from None
    check_amount(amount)
    return amount


def _parse_balance(raw: Any, arity: int = BALANCE_CHUNKS) -> ConfidentialBalance:
    if not isinstance(raw, (bytes, bytearray)):
        raise _Abort(E_INVALID_ARGUMENT)
    return ConfidentialBalance.from_bytes(bytes(raw), arity)


@dataclass
class StoreState:
    encryption_key: EncryptionKey
    pending: ConfidentialBalance
    actual: ConfidentialBalance
    normalized: bool = True
    frozen: bool = False


class LocalLedger(LedgerClient):
    """
    Single-process ledger for tests and local development.

    Parameters
    ----------
    network : NetworkConfig
        Only payloads addressed to this module execute.
    backend : ProofBackend, optional
        Verifier for submitted proofs (``ReferenceProofBackend`` by default).
    auto_commit : bool
        Execute on submit; otherwise wait for ``commit()``.
    poll_interval : float
        Sleep between checks in ``wait_for_transaction``.
    """

    def __init__(
        self,
        network: NetworkConfig,
        backend: Optional[ProofBackend] = None,
        auto_commit: bool = True,
        poll_interval: float = 0.01,
        default_commit_timeout: float = 5.0,
    ) -> None:
        self.network = network
        self.backend = backend or ReferenceProofBackend()
        self.auto_commit = auto_commit
        self.poll_interval = poll_interval
        self.default_commit_timeout = default_commit_timeout

        self._stores: Dict[Tuple[str, str], StoreState] = {}
        self._fungible: Dict[Tuple[str, str], int] = {}
        self._sequence: Dict[str, int] = {}
        self._mempool: Dict[str, Dict[int, Transaction]] = {}
        self._results: Dict[str, TransactionResult] = {}
        self._token_auditors: Dict[str, EncryptionKey] = {}
        self._global_auditor: Optional[EncryptionKey] = None
        self._injected: Dict[str, str] = {}
        self._version = 0
        self.history: List[Tuple[Transaction, TransactionResult]] = []

        self._entry_points: Dict[str, Callable[..., None]] = {
            "register": self._register,
            "deposit_to": self._deposit_to,
            "withdraw_to": self._withdraw_to,
            "rollover_pending_balance": lambda s, t: self._rollover(s, t, False),
            "rollover_pending_balance_and_freeze": lambda s, t: self._rollover(s, t, True),
            "normalize": self._normalize,
            "confidential_transfer": self._confidential_transfer,
            "rotate_encryption_key": (
                lambda s, *a: self._rotate_encryption_key(s, *a, unfreeze=False)
            ),
            "rotate_encryption_key_and_unfreeze": (
                lambda s, *a: self._rotate_encryption_key(s, *a, unfreeze=True)
            ),
        }

    # ── test/admin hooks ─────────────────────────────────────────────────
    def fund(self, account: str, token: str, amount: int) -> None:
        key = (account, token)
        self._fungible[key] = self._fungible.get(key, 0) + amount

    def fungible_balance(self, account: str, token: str) -> int:
        return self._fungible.get((account, token), 0)

    def set_global_auditor(self, key: Optional[EncryptionKey]) -> None:
        self._global_auditor = key

    def set_token_auditor(self, token: str, key: Optional[EncryptionKey]) -> None:
        if key is None:
            self._token_auditors.pop(token, None)
        else:
            self._token_auditors[token] = key

    def inject_failure(self, function_name: str, code: str = "E_INJECTED") -> None:
        """Make the next execution of ``function_name`` abort with ``code``."""
        self._injected[function_name] = code

    def store(self, account: str, token: str) -> StoreState:
        try:
            return self._stores[(account, token)]
        except KeyError:
            raise StoreNotFound(f"no confidential store for {account} / {token}") from None

    def pending_count(self) -> int:
        return sum(len(q) for q in self._mempool.values())

    # ── LedgerClient ─────────────────────────────────────────────────────
    async def view(self, request: ViewRequest) -> List[Any]:
        if (request.module_address, request.module_name) != (
            self.network.module_address, self.network.module_name
        ):
            raise LedgerError(f"unknown view function {request.function_id}", status=400)
        args = request.arguments
        name = request.name
        if name == "has_confidential_asset_store":
            return [(args[0], args[1]) in self._stores]
        if name == "get_auditor":
            return [_option_json(self._token_auditors.get(args[0]))]
        if name == "get_global_auditor":
            return [_option_json(self._global_auditor)]
        if name in ("pending_balance", "actual_balance", "is_frozen",
                    "is_normalized", "encryption_key"):
            st = self.store(args[0], args[1])
            if name == "pending_balance":
                return [_balance_json(st.pending)]
            if name == "actual_balance":
                return [_balance_json(st.actual)]
            if name == "is_frozen":
                return [st.frozen]
            if name == "is_normalized":
                return [st.normalized]
            return [{"data": st.encryption_key.hex()}]
        raise LedgerError(f"unknown view function {request.function_id}", status=400)

    async def get_sequence_number(self, address: str) -> int:
        return self._sequence.get(address, 0)

    async def submit(self, txn: Transaction) -> str:
        committed = self._sequence.get(txn.sender, 0)
        if txn.sequence_number < committed:
            raise LedgerError(
                f"sequence number {txn.sequence_number} too old for {txn.sender} "
                f"(expected >= {committed})",
                status=400,
            )
        queue = self._mempool.setdefault(txn.sender, {})
        if txn.sequence_number in queue:
            raise LedgerError(
                f"sequence number {txn.sequence_number} already pending for {txn.sender}",
                status=400,
            )
        queue[txn.sequence_number] = txn
        logger.debug("accepted %r into mempool", txn)
        if self.auto_commit:
            self.commit()
        return txn.hash

    async def wait_for_transaction(
        self, txn_hash: str, timeout: Optional[float] = None
    ) -> TransactionResult:
        timeout = self.default_commit_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            result = self._results.get(txn_hash)
            if result is not None:
                return result
            if time.monotonic() >= deadline:
                raise CommitTimeout(txn_hash, timeout)
            await asyncio.sleep(self.poll_interval)

    # ── execution ────────────────────────────────────────────────────────
    def commit(self) -> List[TransactionResult]:
        """Execute every mempool transaction whose turn has come."""
        results: List[TransactionResult] = []
        progressed = True
        while progressed:
            progressed = False
            for sender, queue in self._mempool.items():
                seq = self._sequence.get(sender, 0)
                txn = queue.pop(seq, None)
                if txn is None:
                    continue
                results.append(self._execute(txn))
                self._sequence[sender] = seq + 1
                progressed = True
        return results

    def _execute(self, txn: Transaction) -> TransactionResult:
        payload = txn.payload
        status = EXECUTED
        try:
            if (payload.module_address, payload.module_name) != (
                self.network.module_address, self.network.module_name
            ):
                raise _Abort(E_FUNCTION_NOT_FOUND)
            handler = self._entry_points.get(payload.name)
            if handler is None:
                raise _Abort(E_FUNCTION_NOT_FOUND)
            if len(payload.arguments) != _ARITY[payload.name]:
                raise _Abort(E_INVALID_ARGUMENT)
            injected = self._injected.pop(payload.name, None)
            if injected is not None:
                raise _Abort(injected)
            handler(txn.sender, *payload.arguments)
        except _Abort as exc:
            status = f"Move abort: {exc.code}"
        except ValidationError as exc:
            status = f"Move abort: {E_INVALID_ARGUMENT} ({exc})"

        self._version += 1
        result = TransactionResult(
            hash=txn.hash,
            success=status == EXECUTED,
            vm_status=status,
            version=self._version,
        )
        self._results[txn.hash] = result
        self.history.append((txn, result))
        logger.info("executed %r: %s", txn, status)
        return result

    def _get(self, account: str, token: str) -> StoreState:
        st = self._stores.get((account, token))
        if st is None:
            raise _Abort(E_STORE_NOT_FOUND)
        return st

    def _spendable(self, account: str, token: str) -> StoreState:
        st = self._get(account, token)
        if st.frozen:
            raise _Abort(E_FROZEN)
        if not st.normalized:
            raise _Abort(E_NOT_NORMALIZED)
        return st

    def _receivable(self, account: str, token: str) -> StoreState:
        st = self._get(account, token)
        if st.frozen:
            raise _Abort(E_FROZEN)
        return st

    # ── entry points ─────────────────────────────────────────────────────
    def _register(self, sender: str, token: str, key_bytes: bytes) -> None:
        if (sender, token) in self._stores:
            raise _Abort(E_ALREADY_REGISTERED)
        self._stores[(sender, token)] = StoreState(
            encryption_key=EncryptionKey.from_bytes(key_bytes),
            pending=ConfidentialBalance.zero(),
            actual=ConfidentialBalance.zero(),
        )

    def _deposit_to(self, sender: str, token: str, recipient: str, amount_str: str) -> None:
        amount = _parse_amount(amount_str)
        st = self._receivable(recipient, token)
        if self.fungible_balance(sender, token) < amount:
            raise _Abort(E_INSUFFICIENT_FUNDS)
        self._fungible[(sender, token)] -= amount
        st.pending = st.pending + ConfidentialBalance.from_plaintext(amount)

    def _withdraw_to(
        self,
        sender: str,
        token: str,
        recipient: str,
        amount_str: str,
        new_balance: bytes,
        range_proof: bytes,
        sigma_proof: bytes,
    ) -> None:
        amount = _parse_amount(amount_str)
        st = self._spendable(sender, token)
        proof = WithdrawProof(
            new_balance=_parse_balance(new_balance),
            sigma_proof=sigma_proof,
            range_proof=range_proof,
        )
        if not self.backend.verify_withdraw(
            st.encryption_key, st.actual, amount, proof,
            context=proof_context(sender, token),
        ):
            raise _Abort(E_INVALID_PROOF)
        st.actual = proof.new_balance
        st.normalized = True
        self.fund(recipient, token, amount)

    def _rollover(self, sender: str, token: str, freeze: bool) -> None:
        st = self._get(sender, token)
        if not st.normalized:
            raise _Abort(E_NOT_NORMALIZED)
        if not st.pending.is_zero():
            st.actual = st.actual + st.pending
            st.pending = ConfidentialBalance.zero()
            st.normalized = False
        if freeze:
            st.frozen = True

    def _normalize(
        self,
        sender: str,
        token: str,
        new_balance: bytes,
        range_proof: bytes,
        sigma_proof: bytes,
    ) -> None:
        st = self._get(sender, token)
        proof = NormalizationProof(
            new_balance=_parse_balance(new_balance),
            sigma_proof=sigma_proof,
            range_proof=range_proof,
        )
        if not self.backend.verify_normalization(
            st.encryption_key, st.actual, proof,
            context=proof_context(sender, token),
        ):
            raise _Abort(E_INVALID_PROOF)
        st.actual = proof.new_balance
        st.normalized = True

    def _confidential_transfer(
        self,
        sender: str,
        token: str,
        recipient: str,
        new_balance: bytes,
        recipient_amount: bytes,
        auditor_keys: bytes,
        auditor_amounts: bytes,
        range_proof_new_balance: bytes,
        range_proof_amount: bytes,
        sigma_proof: bytes,
    ) -> None:
        st = self._spendable(sender, token)
        rst = self._receivable(recipient, token)

        if len(auditor_keys) % POINT_BYTES:
            raise _Abort(E_INVALID_ARGUMENT)
        keys = [
            EncryptionKey.from_bytes(auditor_keys[i:i + POINT_BYTES])
            for i in range(0, len(auditor_keys), POINT_BYTES)
        ]
        required = [k for k in (self._global_auditor, self._token_auditors.get(token)) if k]
        if keys[:len(required)] != required:
            raise _Abort(E_AUDITOR_MISMATCH)

        amount_size = AMOUNT_CHUNKS * CHUNK_CIPHERTEXT_LENGTH
        if len(auditor_amounts) != amount_size * len(keys):
            raise _Abort(E_INVALID_ARGUMENT)
        amounts = tuple(
            _parse_balance(auditor_amounts[i * amount_size:(i + 1) * amount_size], AMOUNT_CHUNKS)
            for i in range(len(keys))
        )
        proof = TransferProof(
            new_balance=_parse_balance(new_balance),
            recipient_amount=_parse_balance(recipient_amount, AMOUNT_CHUNKS),
            auditor_amounts=amounts,
            sigma_proof=sigma_proof,
            range_proof_new_balance=range_proof_new_balance,
            range_proof_amount=range_proof_amount,
        )
        if not self.backend.verify_transfer(
            st.encryption_key, st.actual, rst.encryption_key, keys, proof,
            context=proof_context(sender, token),
        ):
            raise _Abort(E_INVALID_PROOF)
        st.actual = proof.new_balance
        st.normalized = True
        rst.pending = rst.pending + proof.recipient_amount.widen(BALANCE_CHUNKS)

    def _rotate_encryption_key(
        self,
        sender: str,
        token: str,
        new_key: bytes,
        new_balance: bytes,
        range_proof: bytes,
        sigma_proof: bytes,
        *,
        unfreeze: bool,
    ) -> None:
        st = self._get(sender, token)
        if not st.pending.is_zero():
            raise _Abort(E_PENDING_NOT_EMPTY)
        new_public = EncryptionKey.from_bytes(new_key)
        proof = KeyRotationProof(
            new_balance=_parse_balance(new_balance),
            sigma_proof=sigma_proof,
            range_proof=range_proof,
        )
        if not self.backend.verify_key_rotation(
            st.encryption_key, new_public, st.actual, proof,
            context=proof_context(sender, token),
        ):
            raise _Abort(E_INVALID_PROOF)
        st.encryption_key = new_public
        st.actual = proof.new_balance
        st.normalized = True
        if unfreeze:
            st.frozen = False
