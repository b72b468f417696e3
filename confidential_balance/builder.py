"""
Payload construction for the seven state-changing store operations.

Each method returns an ``EntryFunction`` whose name and positional argument
order match the on-chain module exactly.  Proof-bearing operations are
coroutines: they validate their inputs, run the prover on the backend's
worker pool and await it, and (by default) re-verify the result locally so
a bad proof never reaches the ledger.

Preconditions such as "the store is normalized" are *not* checked here;
the builder only sees the ciphertext it is handed.  ``SafeOrchestrator``
is responsible for probing the store first.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Optional, Sequence, Union

from .backend import (
    KeyRotationProof,
    NormalizationProof,
    ProgressCallback,
    ProofBackend,
    TransferProof,
    WithdrawProof,
    proof_context,
)
from .chunked import (
    BALANCE_CHUNKS,
    ConfidentialBalance,
    check_amount,
    decrypt_balance,
)
from .config import NetworkConfig
from .elgamal import ChunkCiphertext
from .errors import (
    ChunkArityMismatch,
    ConfigError,
    InsufficientBalance,
    ProofConstructionError,
)
from .keys import DecryptionKey, EncryptionKey
from .payload import EntryFunction
from .reader import BalanceStoreReader

logger = logging.getLogger("confidential_balance.builder")

KeyLike = Union[DecryptionKey, bytes, str]
PublicKeyLike = Union[EncryptionKey, bytes, str]
BalanceLike = Union[ConfidentialBalance, bytes, Sequence[ChunkCiphertext]]

# ── entry points of the on-chain module ─────────────────────────────────
FN_REGISTER = "register"
FN_DEPOSIT = "deposit_to"
FN_WITHDRAW = "withdraw_to"
FN_ROLLOVER = "rollover_pending_balance"
FN_ROLLOVER_FREEZE = "rollover_pending_balance_and_freeze"
FN_NORMALIZE = "normalize"
FN_TRANSFER = "confidential_transfer"
FN_ROTATE = "rotate_encryption_key"
FN_ROTATE_UNFREEZE = "rotate_encryption_key_and_unfreeze"


def coerce_balance(value: BalanceLike) -> ConfidentialBalance:
    """Accept a balance, its wire bytes, or a chunk list; enforce the arity."""
    if isinstance(value, ConfidentialBalance):
        return value.require_arity(BALANCE_CHUNKS)
    if isinstance(value, (bytes, bytearray)):
        return ConfidentialBalance.from_bytes(bytes(value), BALANCE_CHUNKS)
    chunks = tuple(value)
    if len(chunks) != BALANCE_CHUNKS:
        raise ChunkArityMismatch(BALANCE_CHUNKS, len(chunks))
    return ConfidentialBalance(chunks=chunks)


class OperationBuilder:
    """
    Build ledger payloads for one network.

    Parameters
    ----------
    network : NetworkConfig
        Fixed for the lifetime of the builder.
    backend : ProofBackend
        Prover (and local verifier) for proof-bearing operations.
    reader : BalanceStoreReader, optional
        Needed only by ``transfer_coin`` to fetch the ledger's auditors;
        ``transfer_coin`` raises ``ConfigError`` without it.
    verify_before_submit : bool
        Re-check every produced proof with the backend verifier.
    """

    def __init__(
        self,
        network: NetworkConfig,
        backend: ProofBackend,
        reader: Optional[BalanceStoreReader] = None,
        verify_before_submit: bool = True,
    ) -> None:
        self.network = network
        self.backend = backend
        self.reader = reader
        self.verify_before_submit = verify_before_submit

    def _entry(self, name: str, *args: Any) -> EntryFunction:
        return EntryFunction(
            module_address=self.network.module_address,
            module_name=self.network.module_name,
            name=name,
            arguments=tuple(args),
        )

    async def _prove(
        self,
        method: Callable[..., Any],
        *args: Any,
        on_progress: Optional[ProgressCallback] = None,
        **kwargs: Any,
    ) -> Any:
        task = self.backend.submit(method, *args, on_progress=on_progress, **kwargs)
        return await task

    async def _check(self, verifier: Callable[..., bool], *args: Any, **kwargs: Any) -> None:
        if not self.verify_before_submit:
            return
        loop = asyncio.get_running_loop()
        ok = await loop.run_in_executor(None, functools.partial(verifier, *args, **kwargs))
        if not ok:
            raise ProofConstructionError(
                f"{verifier.__name__} rejected the locally built proof"
            )

    async def _require_funds(
        self, key: DecryptionKey, balance: ConfidentialBalance, amount: int
    ) -> None:
        loop = asyncio.get_running_loop()
        available = await loop.run_in_executor(None, decrypt_balance, balance, key)
        if amount > available:
            raise InsufficientBalance(amount, available)

    # ── proof-free operations ────────────────────────────────────────────
    def register(
        self, sender: str, token: str, encryption_key: PublicKeyLike
    ) -> EntryFunction:
        key = EncryptionKey.coerce(encryption_key)
        return self._entry(FN_REGISTER, token, key.to_bytes())

    def deposit(
        self,
        sender: str,
        token: str,
        amount: int,
        recipient: Optional[str] = None,
    ) -> EntryFunction:
        """Plaintext deposit; the ledger encrypts under the store's key."""
        check_amount(amount)
        return self._entry(FN_DEPOSIT, token, recipient or sender, str(amount))

    def rollover(self, sender: str, token: str, with_freeze: bool = False) -> EntryFunction:
        return self._entry(FN_ROLLOVER_FREEZE if with_freeze else FN_ROLLOVER, token)

    # ── proof-bearing operations ─────────────────────────────────────────
    async def withdraw(
        self,
        decryption_key: KeyLike,
        actual_balance: BalanceLike,
        amount: int,
        sender: str,
        token: str,
        recipient: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EntryFunction:
        key = DecryptionKey.coerce(decryption_key)
        balance = coerce_balance(actual_balance)
        check_amount(amount)
        await self._require_funds(key, balance, amount)

        context = proof_context(sender, token)
        proof: WithdrawProof = await self._prove(
            self.backend.prove_withdraw, key, balance, amount,
            context=context, on_progress=on_progress,
        )
        await self._check(
            self.backend.verify_withdraw,
            key.encryption_key(), balance, amount, proof, context=context,
        )
        logger.info("built withdraw of %d for %s/%s", amount, sender, token)
        return self._entry(
            FN_WITHDRAW,
            token,
            recipient or sender,
            str(amount),
            proof.new_balance.to_bytes(),
            proof.range_proof,
            proof.sigma_proof,
        )

    async def normalize(
        self,
        decryption_key: KeyLike,
        unnormalized_balance: BalanceLike,
        known_plaintext: int,
        sender: str,
        token: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EntryFunction:
        key = DecryptionKey.coerce(decryption_key)
        balance = coerce_balance(unnormalized_balance)

        context = proof_context(sender, token)
        proof: NormalizationProof = await self._prove(
            self.backend.prove_normalization, key, balance, known_plaintext,
            context=context, on_progress=on_progress,
        )
        await self._check(
            self.backend.verify_normalization,
            key.encryption_key(), balance, proof, context=context,
        )
        logger.info("built normalize for %s/%s", sender, token)
        return self._entry(
            FN_NORMALIZE,
            token,
            proof.new_balance.to_bytes(),
            proof.range_proof,
            proof.sigma_proof,
        )

    async def transfer_coin(
        self,
        decryption_key: KeyLike,
        actual_balance: BalanceLike,
        amount: int,
        recipient_key: PublicKeyLike,
        auditor_keys: Sequence[PublicKeyLike],
        sender: str,
        token: str,
        recipient: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EntryFunction:
        """
        Confidential transfer to ``recipient``.

        The ledger's auditors (global, then per-token) are prepended to
        ``auditor_keys``; duplicates are kept, each key gets its own
        amount ciphertext.
        """
        key = DecryptionKey.coerce(decryption_key)
        balance = coerce_balance(actual_balance)
        check_amount(amount)
        recipient_public = EncryptionKey.coerce(recipient_key)
        extra = [EncryptionKey.coerce(k) for k in auditor_keys]
        await self._require_funds(key, balance, amount)

        if self.reader is None:
            raise ConfigError("transfer_coin needs a reader to fetch the ledger auditors")
        ledger_auditors = await self.reader.ledger_auditors(token)
        auditors = [*ledger_auditors, *extra]

        context = proof_context(sender, token)
        proof: TransferProof = await self._prove(
            self.backend.prove_transfer, key, balance, amount, recipient_public, auditors,
            context=context, on_progress=on_progress,
        )
        await self._check(
            self.backend.verify_transfer,
            key.encryption_key(), balance, recipient_public, auditors, proof,
            context=context,
        )
        logger.info(
            "built transfer from %s to %s (%d auditors) on %s",
            sender, recipient, len(auditors), token,
        )
        return self._entry(
            FN_TRANSFER,
            token,
            recipient,
            proof.new_balance.to_bytes(),
            proof.recipient_amount.to_bytes(),
            b"".join(a.to_bytes() for a in auditors),
            proof.auditor_amounts_bytes(),
            proof.range_proof_new_balance,
            proof.range_proof_amount,
            proof.sigma_proof,
        )

    async def rotate_key(
        self,
        old_decryption_key: KeyLike,
        new_decryption_key: KeyLike,
        actual_balance: BalanceLike,
        sender: str,
        token: str,
        with_unfreeze: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EntryFunction:
        old_key = DecryptionKey.coerce(old_decryption_key)
        new_key = DecryptionKey.coerce(new_decryption_key)
        balance = coerce_balance(actual_balance)

        context = proof_context(sender, token)
        proof: KeyRotationProof = await self._prove(
            self.backend.prove_key_rotation, old_key, new_key, balance,
            context=context, on_progress=on_progress,
        )
        await self._check(
            self.backend.verify_key_rotation,
            old_key.encryption_key(), new_key.encryption_key(), balance, proof,
            context=context,
        )
        logger.info("built key rotation for %s/%s", sender, token)
        return self._entry(
            FN_ROTATE_UNFREEZE if with_unfreeze else FN_ROTATE,
            token,
            new_key.encryption_key().to_bytes(),
            proof.new_balance.to_bytes(),
            proof.range_proof,
            proof.sigma_proof,
        )
