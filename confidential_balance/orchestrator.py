"""
Multi-step flows over a confidential store.

Two sequencing strategies are used, chosen per flow:

- **local sequencing**: when every payload in a flow can be built from
  state already known to the client, the payloads are numbered with
  consecutive sequence numbers from one fetch and submitted as a batch
  (safe rollover: normalize, then rollover);
- **commit, then re-fetch**: when a later proof must be built against a
  ciphertext that only exists after the ledger executes an earlier step,
  the flow waits for commitment and reads the store again (safe key
  rotation: rollover-and-freeze, then rotate against the merged balance).

Every flow starts with a fresh probe of ``(frozen, normalized)``, so calling
a flow again after a partial failure resumes it.

Precondition (not enforced): callers must not run two flows concurrently
for the same (account, token); sequence numbers and the observed flags
would race.  No step is ever retried automatically.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Union

from .backend import ProgressCallback, ProofBackend
from .builder import OperationBuilder, PublicKeyLike
from .chunked import ConfidentialBalance, check_amount, decrypt_balance_lenient
from .config import ClientConfig, NetworkConfig
from .errors import (
    ConfidentialBalanceError,
    InsufficientBalance,
    MissingDecryptionKey,
    PartialFlowError,
    TransactionFailed,
)
from .keys import DecryptionKey, EncryptionKey
from .ledger import LedgerClient, RestLedgerClient
from .payload import EntryFunction, Transaction, TransactionResult
from .prover import ReferenceProofBackend
from .reader import BalanceStoreReader

logger = logging.getLogger("confidential_balance.orchestrator")


@contextmanager
def _resumable(committed: Sequence[TransactionResult], what: str) -> Iterator[None]:
    """Turn a failure into ``PartialFlowError`` once earlier steps committed."""
    try:
        yield
    except ConfidentialBalanceError as exc:
        if committed:
            raise PartialFlowError(
                f"{what}: {exc}", committed=committed, cause=exc
            ) from exc
        raise


class SafeOrchestrator:
    """
    Compose builder payloads into ordered, ledger-checked flows.

    Parameters
    ----------
    client : LedgerClient
        Ledger transport (submission, views, commitment waits).
    network : NetworkConfig
        Fixed module location for every payload and view.
    backend : ProofBackend
        Prover used by the builder.
    builder, reader : optional
        Supplied instances override the defaults built from the above.
    commit_timeout : float, optional
        Default bound on each commitment wait.
    """

    def __init__(
        self,
        client: LedgerClient,
        network: NetworkConfig,
        backend: ProofBackend,
        builder: Optional[OperationBuilder] = None,
        reader: Optional[BalanceStoreReader] = None,
        commit_timeout: Optional[float] = None,
        verify_before_submit: bool = True,
    ) -> None:
        self.client = client
        self.network = network
        self.backend = backend
        self.reader = reader or BalanceStoreReader(client, network)
        self.builder = builder or OperationBuilder(
            network, backend, self.reader, verify_before_submit=verify_before_submit
        )
        self.commit_timeout = commit_timeout

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        client: Optional[LedgerClient] = None,
        backend: Optional[ProofBackend] = None,
    ) -> SafeOrchestrator:
        """Wire a REST client and the reference backend from configuration."""
        client = client or RestLedgerClient(
            config.node_url,
            request_timeout=config.ledger.request_timeout,
            poll_interval=config.ledger.poll_interval,
            default_commit_timeout=config.ledger.commit_timeout,
        )
        backend = backend or ReferenceProofBackend(max_workers=config.prover.max_workers)
        return cls(
            client,
            config.network_config(),
            backend,
            commit_timeout=config.ledger.commit_timeout,
            verify_before_submit=config.prover.verify_before_submit,
        )

    # ── plumbing ─────────────────────────────────────────────────────────
    async def _decrypt(self, balance: ConfidentialBalance, key: DecryptionKey) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, decrypt_balance_lenient, balance, key)

    async def _sequence(self, sender: str, payloads: Sequence[EntryFunction]) -> List[Transaction]:
        """Number ``payloads`` consecutively from one sequence-number fetch."""
        start = await self.client.get_sequence_number(sender)
        return [
            Transaction(sender=sender, sequence_number=start + i, payload=p)
            for i, p in enumerate(payloads)
        ]

    async def _submit_and_wait(
        self,
        txns: Sequence[Transaction],
        timeout: Optional[float] = None,
        committed: Sequence[TransactionResult] = (),
    ) -> List[TransactionResult]:
        """
        Submit ``txns`` in order, then wait for each to commit.

        Raises ``TransactionFailed`` / ``CommitTimeout`` as-is when nothing
        in the flow has committed yet, ``PartialFlowError`` otherwise.
        """
        timeout = self.commit_timeout if timeout is None else timeout
        done: List[TransactionResult] = list(committed)
        results: List[TransactionResult] = []
        try:
            hashes = []
            for txn in txns:
                hashes.append(await self.client.submit(txn))
            for txn_hash in hashes:
                result = await self.client.wait_for_transaction(txn_hash, timeout)
                if not result.success:
                    raise TransactionFailed(result)
                results.append(result)
                done.append(result)
        except ConfidentialBalanceError as exc:
            if done:
                raise PartialFlowError(
                    f"flow stopped after {len(done)} committed step(s): {exc}",
                    committed=done,
                    cause=exc,
                ) from exc
            raise
        return results

    async def _run(
        self,
        sender: str,
        payloads: Sequence[EntryFunction],
        timeout: Optional[float] = None,
        committed: Sequence[TransactionResult] = (),
    ) -> List[TransactionResult]:
        txns = await self._sequence(sender, payloads)
        return await self._submit_and_wait(txns, timeout, committed)

    # ── safe rollover ────────────────────────────────────────────────────
    async def prepare_safe_rollover(
        self,
        sender: str,
        token: str,
        decryption_key: Optional[Union[DecryptionKey, bytes, str]] = None,
        plaintext: Optional[int] = None,
        with_freeze: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Transaction]:
        """
        Build ``[normalize?, rollover]`` for ``sender``.

        Normalize is included only when the store reports it is not
        normalized; it is proven against the actual balance as read now,
        and the rollover does not depend on its output, so both are
        numbered from a single sequence-number fetch.
        """
        payloads: List[EntryFunction] = []
        if not await self.reader.is_normalized(sender, token):
            if decryption_key is None:
                raise MissingDecryptionKey(
                    f"store {sender}/{token} is not normalized; a decryption key is required"
                )
            key = DecryptionKey.coerce(decryption_key)
            actual = await self.reader.actual_balance(sender, token)
            if plaintext is None:
                plaintext = await self._decrypt(actual, key)
            payloads.append(await self.builder.normalize(
                key, actual, plaintext, sender, token, on_progress=on_progress
            ))
            logger.info("safe rollover for %s/%s will normalize first", sender, token)
        payloads.append(self.builder.rollover(sender, token, with_freeze=with_freeze))
        return await self._sequence(sender, payloads)

    async def safe_rollover(
        self,
        sender: str,
        token: str,
        decryption_key: Optional[Union[DecryptionKey, bytes, str]] = None,
        plaintext: Optional[int] = None,
        with_freeze: bool = False,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TransactionResult]:
        txns = await self.prepare_safe_rollover(
            sender, token, decryption_key, plaintext, with_freeze, on_progress
        )
        return await self._submit_and_wait(txns, timeout)

    # ── safe key rotation ────────────────────────────────────────────────
    async def safe_rotate_key(
        self,
        sender: str,
        token: str,
        old_key: Union[DecryptionKey, bytes, str],
        new_key: Union[DecryptionKey, bytes, str],
        with_unfreeze: bool = True,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TransactionResult]:
        """
        Re-encrypt the actual balance under ``new_key``.

        If the store is not frozen, rollover-and-freeze is submitted and
        **committed** first; the rotation proof is then built against the
        actual balance re-read from the ledger, since the merged ciphertext
        does not exist until the ledger has executed the rollover.

        On ``CommitTimeout`` during the first step the outcome is
        indeterminate; call again and the fresh probe decides where to
        resume.
        """
        old = DecryptionKey.coerce(old_key)
        new = DecryptionKey.coerce(new_key)

        committed: List[TransactionResult] = []
        if not await self.reader.is_frozen(sender, token):
            logger.info("rotating %s/%s: rollover and freeze first", sender, token)
            committed = await self.safe_rollover(
                sender, token, old, with_freeze=True, timeout=timeout,
                on_progress=on_progress,
            )

        with _resumable(committed, f"key rotation for {sender}/{token} not built after freeze"):
            actual = await self.reader.actual_balance(sender, token)
            payload = await self.builder.rotate_key(
                old, new, actual, sender, token,
                with_unfreeze=with_unfreeze, on_progress=on_progress,
            )
        results = await self._run(sender, [payload], timeout, committed)
        return committed + results

    # ── single-operation flows ───────────────────────────────────────────
    async def register(
        self,
        sender: str,
        token: str,
        key: Union[DecryptionKey, EncryptionKey, bytes, str],
        timeout: Optional[float] = None,
    ) -> List[TransactionResult]:
        if isinstance(key, DecryptionKey):
            key = key.encryption_key()
        return await self._run(sender, [self.builder.register(sender, token, key)], timeout)

    async def deposit(
        self,
        sender: str,
        token: str,
        amount: int,
        recipient: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[TransactionResult]:
        payload = self.builder.deposit(sender, token, amount, recipient)
        return await self._run(sender, [payload], timeout)

    async def normalize(
        self,
        sender: str,
        token: str,
        decryption_key: Union[DecryptionKey, bytes, str],
        plaintext: Optional[int] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TransactionResult]:
        key = DecryptionKey.coerce(decryption_key)
        actual = await self.reader.actual_balance(sender, token)
        if plaintext is None:
            plaintext = await self._decrypt(actual, key)
        payload = await self.builder.normalize(
            key, actual, plaintext, sender, token, on_progress=on_progress
        )
        return await self._run(sender, [payload], timeout)

    async def _prepare_spend(
        self,
        sender: str,
        token: str,
        key: DecryptionKey,
        amount: int,
        use_pending_balance: bool,
        timeout: Optional[float],
    ) -> List[TransactionResult]:
        """
        Make ``amount`` spendable from a normalized actual balance.

        Rolls pending in when allowed and needed, then normalizes; each
        step is committed before the next proof is built.
        """
        check_amount(amount)
        balance = await self.reader.get_balance(sender, token, key)
        normalized = await self.reader.is_normalized(sender, token)
        committed: List[TransactionResult] = []
        plaintext: Optional[int] = balance.actual

        if balance.actual < amount:
            if not use_pending_balance:
                raise InsufficientBalance(amount, balance.actual)
            if balance.total < amount:
                raise InsufficientBalance(amount, balance.total)
            committed = await self.safe_rollover(
                sender, token, key, plaintext=balance.actual, timeout=timeout
            )
            # pending may have been credited since the read; re-decrypt after commit
            normalized = False
            plaintext = None

        if not normalized:
            with _resumable(committed, f"normalize after rollover failed for {sender}/{token}"):
                committed += await self.normalize(
                    sender, token, key, plaintext=plaintext, timeout=timeout
                )
        return committed

    async def withdraw(
        self,
        sender: str,
        token: str,
        decryption_key: Union[DecryptionKey, bytes, str],
        amount: int,
        recipient: Optional[str] = None,
        use_pending_balance: bool = False,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TransactionResult]:
        key = DecryptionKey.coerce(decryption_key)
        committed = await self._prepare_spend(
            sender, token, key, amount, use_pending_balance, timeout
        )
        with _resumable(committed, f"withdraw for {sender}/{token} not built"):
            actual = await self.reader.actual_balance(sender, token)
            payload = await self.builder.withdraw(
                key, actual, amount, sender, token, recipient, on_progress=on_progress
            )
        return committed + await self._run(sender, [payload], timeout, committed)

    async def transfer(
        self,
        sender: str,
        token: str,
        decryption_key: Union[DecryptionKey, bytes, str],
        amount: int,
        recipient: str,
        auditor_keys: Sequence[PublicKeyLike] = (),
        use_pending_balance: bool = False,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[TransactionResult]:
        """Transfer ``amount`` to ``recipient``'s pending balance."""
        key = DecryptionKey.coerce(decryption_key)
        committed = await self._prepare_spend(
            sender, token, key, amount, use_pending_balance, timeout
        )
        with _resumable(committed, f"transfer for {sender}/{token} not built"):
            actual, recipient_key = await asyncio.gather(
                self.reader.actual_balance(sender, token),
                self.reader.encryption_key(recipient, token),
            )
            payload = await self.builder.transfer_coin(
                key, actual, amount, recipient_key, auditor_keys,
                sender, token, recipient, on_progress=on_progress,
            )
        return committed + await self._run(sender, [payload], timeout, committed)
