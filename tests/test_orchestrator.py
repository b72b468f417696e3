"""
Tests for confidential_balance.orchestrator (SafeOrchestrator) against the
in-memory ledger.

Covers:
  - Safe rollover batching and idempotence
  - Safe key rotation (freeze, commit, re-fetch, rotate) and resumption
  - Withdraw/transfer preparation from pending balance
  - Error surfaces: missing key, insufficient balance, commit timeout,
    partial flows
"""

import pytest

from confidential_balance.builder import FN_NORMALIZE, FN_ROLLOVER, FN_ROLLOVER_FREEZE
from confidential_balance.chunked import decrypt_balance
from confidential_balance.config import ClientConfig
from confidential_balance.errors import (
    CommitTimeout,
    InsufficientBalance,
    MissingDecryptionKey,
    PartialFlowError,
    RangeError,
    TransactionFailed,
)
from confidential_balance.keys import DecryptionKey
from confidential_balance.orchestrator import SafeOrchestrator

ALICE = "0xa11ce"
BOB = "0xb0b"
TOKEN = "0x10c0"


async def funded(flows, key, amount, account=ALICE):
    """Registered store whose actual balance holds ``amount`` (un-normalized)."""
    await flows.register(account, TOKEN, key)
    await flows.deposit(account, TOKEN, amount)
    await flows.safe_rollover(account, TOKEN, key)


@pytest.mark.asyncio
class TestSafeRollover:

    async def test_normalized_store_rolls_over_only(self, flows, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        await flows.deposit(ALICE, TOKEN, 10)
        txns = await flows.prepare_safe_rollover(ALICE, TOKEN, alice_key)
        assert [t.payload.name for t in txns] == [FN_ROLLOVER]
        assert txns[0].sequence_number == 2

    async def test_unnormalized_store_normalizes_first(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 10)
        await flows.deposit(ALICE, TOKEN, 5)
        txns = await flows.prepare_safe_rollover(ALICE, TOKEN, alice_key, with_freeze=True)
        assert [t.payload.name for t in txns] == [FN_NORMALIZE, FN_ROLLOVER_FREEZE]
        seq = await ledger.get_sequence_number(ALICE)
        assert [t.sequence_number for t in txns] == [seq, seq + 1]

    async def test_merges_pending(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 1000)
        await flows.deposit(ALICE, TOKEN, 234)
        results = await flows.safe_rollover(ALICE, TOKEN, alice_key)
        assert len(results) == 2 and all(r.success for r in results)
        balance = await flows.reader.get_balance(ALICE, TOKEN, alice_key)
        assert (balance.actual, balance.pending) == (1234, 0)

    async def test_missing_key(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 10)
        before = len(ledger.history)
        with pytest.raises(MissingDecryptionKey):
            await flows.safe_rollover(ALICE, TOKEN)
        assert len(ledger.history) == before

    async def test_commit_timeout_surfaces(self, flows, ledger, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        ledger.auto_commit = False
        with pytest.raises(CommitTimeout):
            await flows.safe_rollover(ALICE, TOKEN, alice_key, timeout=0.05)
        # the transaction may still commit afterwards
        assert ledger.pending_count() == 1
        assert ledger.commit()[0].success

    async def test_overflowed_chunks(self, flows, ledger, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        await flows.deposit(ALICE, TOKEN, 60_000)
        await flows.deposit(ALICE, TOKEN, 60_000)
        await flows.safe_rollover(ALICE, TOKEN, alice_key)
        await flows.normalize(ALICE, TOKEN, alice_key)
        st = ledger.store(ALICE, TOKEN)
        assert st.normalized
        assert decrypt_balance(st.actual, alice_key) == 120_000


@pytest.mark.asyncio
class TestSafeRotateKey:

    async def test_rotation_from_unfrozen(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 700)
        new_key = DecryptionKey.generate()
        results = await flows.safe_rotate_key(ALICE, TOKEN, alice_key, new_key)
        # normalize, rollover-and-freeze, rotate-and-unfreeze
        assert len(results) == 3
        st = ledger.store(ALICE, TOKEN)
        assert st.encryption_key == new_key.encryption_key()
        assert not st.frozen and st.normalized
        assert decrypt_balance(st.actual, new_key) == 700

    async def test_frozen_store_skips_rollover(self, flows, ledger, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        await flows.safe_rollover(ALICE, TOKEN, alice_key, with_freeze=True)
        before = len(ledger.history)
        new_key = DecryptionKey.generate()
        results = await flows.safe_rotate_key(ALICE, TOKEN, alice_key, new_key)
        assert len(results) == 1
        assert len(ledger.history) == before + 1
        assert ledger.store(ALICE, TOKEN).encryption_key == new_key.encryption_key()

    async def test_keep_frozen(self, flows, ledger, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        await flows.safe_rotate_key(
            ALICE, TOKEN, alice_key, DecryptionKey.generate(), with_unfreeze=False
        )
        assert ledger.store(ALICE, TOKEN).frozen

    async def test_partial_failure_then_resume(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 300)
        new_key = DecryptionKey.generate()
        ledger.inject_failure("rotate_encryption_key_and_unfreeze")
        with pytest.raises(PartialFlowError) as info:
            await flows.safe_rotate_key(ALICE, TOKEN, alice_key, new_key)
        assert isinstance(info.value.cause, TransactionFailed)
        assert len(info.value.committed) == 2
        assert ledger.store(ALICE, TOKEN).frozen

        # calling again resumes from the frozen state
        results = await flows.safe_rotate_key(ALICE, TOKEN, alice_key, new_key)
        assert len(results) == 1
        assert decrypt_balance(ledger.store(ALICE, TOKEN).actual, new_key) == 300

    async def test_first_step_failure_is_not_partial(self, flows, ledger, alice_key):
        await flows.register(ALICE, TOKEN, alice_key)
        ledger.inject_failure("rollover_pending_balance_and_freeze")
        with pytest.raises(TransactionFailed):
            await flows.safe_rotate_key(ALICE, TOKEN, alice_key, DecryptionKey.generate())


@pytest.mark.asyncio
class TestSpending:

    async def test_withdraw_normalizes_first(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 500)
        results = await flows.withdraw(ALICE, TOKEN, alice_key, 200, recipient=BOB)
        assert len(results) == 2
        assert decrypt_balance(ledger.store(ALICE, TOKEN).actual, alice_key) == 300
        assert ledger.fungible_balance(BOB, TOKEN) == 1_000_000 + 200

    async def test_withdraw_from_pending(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 300)
        await flows.deposit(ALICE, TOKEN, 200)
        results = await flows.withdraw(
            ALICE, TOKEN, alice_key, 450, use_pending_balance=True
        )
        # normalize, rollover, normalize, withdraw
        assert len(results) == 4
        balance = await flows.reader.get_balance(ALICE, TOKEN, alice_key)
        assert (balance.actual, balance.pending) == (50, 0)

    async def test_over_withdraw_submits_nothing(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 100)
        before = len(ledger.history)
        with pytest.raises(InsufficientBalance):
            await flows.withdraw(ALICE, TOKEN, alice_key, 101)
        with pytest.raises(InsufficientBalance):
            await flows.withdraw(ALICE, TOKEN, alice_key, 10_000, use_pending_balance=True)
        assert len(ledger.history) == before

    async def test_negative_amount(self, flows, alice_key):
        with pytest.raises(RangeError):
            await flows.withdraw(ALICE, TOKEN, alice_key, -1)

    async def test_zero_transfer(self, flows, ledger, alice_key, bob_key):
        await funded(flows, alice_key, 10)
        await flows.register(BOB, TOKEN, bob_key)
        results = await flows.transfer(ALICE, TOKEN, alice_key, 0, BOB)
        assert results[-1].success
        assert decrypt_balance(ledger.store(BOB, TOKEN).pending, bob_key) == 0
        assert decrypt_balance(ledger.store(ALICE, TOKEN).actual, alice_key) == 10

    async def test_transfer_to_frozen_recipient(self, flows, ledger, alice_key, bob_key):
        await funded(flows, alice_key, 10)
        await flows.register(BOB, TOKEN, bob_key)
        await flows.safe_rollover(BOB, TOKEN, bob_key, with_freeze=True)
        await flows.normalize(ALICE, TOKEN, alice_key)
        with pytest.raises(TransactionFailed):
            await flows.transfer(ALICE, TOKEN, alice_key, 1, BOB)

    async def test_withdraw_from_pending_after_late_credit(
        self, flows, ledger, alice_key, monkeypatch
    ):
        await funded(flows, alice_key, 300)
        await flows.deposit(ALICE, TOKEN, 200)
        read_balance = flows.reader.get_balance

        async def read_then_credit(*args, **kwargs):
            snapshot = await read_balance(*args, **kwargs)
            # another account credits pending after the snapshot was taken
            await flows.deposit(BOB, TOKEN, 50, recipient=ALICE)
            return snapshot

        monkeypatch.setattr(flows.reader, "get_balance", read_then_credit)
        results = await flows.withdraw(
            ALICE, TOKEN, alice_key, 450, use_pending_balance=True
        )
        monkeypatch.undo()
        assert all(r.success for r in results)
        balance = await flows.reader.get_balance(ALICE, TOKEN, alice_key)
        assert (balance.actual, balance.pending) == (100, 0)

    async def test_failure_after_normalize_is_partial(self, flows, ledger, alice_key):
        await funded(flows, alice_key, 50)
        ledger.inject_failure("withdraw_to")
        with pytest.raises(PartialFlowError) as info:
            await flows.withdraw(ALICE, TOKEN, alice_key, 5)
        assert [r.success for r in info.value.committed] == [True]
        assert ledger.store(ALICE, TOKEN).normalized


@pytest.mark.asyncio
async def test_from_config_uses_given_client(ledger, backend):
    flows = SafeOrchestrator.from_config(ClientConfig(), client=ledger, backend=backend)
    assert flows.network == ledger.network
    assert flows.builder.verify_before_submit
    key = DecryptionKey.generate()
    results = await flows.register(ALICE, TOKEN, key)
    assert results[0].success
