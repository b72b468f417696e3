"""
End-to-end scenario on the in-memory ledger: register, deposit, safe
rollover, safe key rotation, then an audited confidential transfer.
"""

import pytest

from confidential_balance.builder import FN_TRANSFER
from confidential_balance.chunked import AMOUNT_CHUNKS, ConfidentialBalance, decrypt_balance
from confidential_balance.keys import DecryptionKey

ALICE = "0xa11ce"
BOB = "0xb0b"
TOKEN = "0x10c0"


@pytest.mark.asyncio
async def test_register_deposit_rotate_transfer(flows, ledger, bob_key):
    k1 = DecryptionKey.derive(b"e2e-alice-seed-00000001", 1)
    k2 = DecryptionKey.derive(b"e2e-alice-seed-00000001", 2)
    auditor = DecryptionKey.derive(b"e2e-auditor-seed-000001", 0)

    # register and fund
    assert (await flows.register(ALICE, TOKEN, k1))[0].success
    assert (await flows.deposit(ALICE, TOKEN, 1000))[0].success
    await flows.safe_rollover(ALICE, TOKEN, k1)
    balance = await flows.reader.get_balance(ALICE, TOKEN, k1)
    assert (balance.actual, balance.pending) == (1000, 0)

    # rotate K1 -> K2; the store ends unfrozen
    await flows.safe_rotate_key(ALICE, TOKEN, k1, k2)
    store = await flows.reader.get_store(ALICE, TOKEN)
    assert store.encryption_key == k2.encryption_key()
    assert not store.frozen
    balance = await flows.reader.get_balance(ALICE, TOKEN, k2)
    assert balance.actual == 1000

    # transfer 400 to Bob, visible to one auditor
    await flows.register(BOB, TOKEN, bob_key)
    results = await flows.transfer(
        ALICE, TOKEN, k2, 400, BOB, auditor_keys=[auditor.encryption_key()]
    )
    assert all(r.success for r in results)

    alice = await flows.reader.get_balance(ALICE, TOKEN, k2)
    bob = await flows.reader.get_balance(BOB, TOKEN, bob_key)
    assert alice.actual == 600
    assert bob.pending == 400

    txn, _result = ledger.history[-1]
    assert txn.payload.name == FN_TRANSFER
    audited = ConfidentialBalance.from_bytes(txn.payload.arguments[5], AMOUNT_CHUNKS)
    assert decrypt_balance(audited, auditor) == 400

    # Bob can bring the received amount into his actual balance
    await flows.safe_rollover(BOB, TOKEN, bob_key)
    bob = await flows.reader.get_balance(BOB, TOKEN, bob_key)
    assert (bob.actual, bob.pending) == (400, 0)
