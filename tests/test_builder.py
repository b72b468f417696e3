"""
Tests for confidential_balance.builder and confidential_balance.payload.

Covers:
  - Entry-function names and argument order for every operation
  - Input validation before any proof work
  - Ledger auditors prepended to caller-supplied auditors
  - JSON rendering and transaction hashing
"""

import pytest

from confidential_balance.builder import (
    FN_DEPOSIT,
    FN_NORMALIZE,
    FN_REGISTER,
    FN_ROLLOVER,
    FN_ROLLOVER_FREEZE,
    FN_ROTATE,
    FN_ROTATE_UNFREEZE,
    FN_TRANSFER,
    FN_WITHDRAW,
    OperationBuilder,
    coerce_balance,
)
from confidential_balance.chunked import (
    AMOUNT_CHUNKS,
    BALANCE_CHUNKS,
    ConfidentialBalance,
    decrypt_balance,
    encrypt_amount,
)
from confidential_balance.elgamal import CHUNK_CIPHERTEXT_LENGTH
from confidential_balance.errors import (
    ChunkArityMismatch,
    ConfigError,
    InsufficientBalance,
    InvalidKeyLength,
    RangeError,
)
from confidential_balance.keys import DecryptionKey
from confidential_balance.payload import EntryFunction, Transaction, TransactionResult
from confidential_balance.prover import ReferenceProofBackend
from confidential_balance.reader import BalanceStoreReader

ALICE = "0xa11ce"
BOB = "0xb0b"
TOKEN = "0x10c0"


class CountingBackend(ReferenceProofBackend):
    """Reference backend that records how many proofs were submitted."""

    def __init__(self):
        super().__init__(max_workers=1)
        self.submitted = 0

    def submit(self, method, *args, **kwargs):
        self.submitted += 1
        return super().submit(method, *args, **kwargs)


@pytest.fixture
def counting():
    b = CountingBackend()
    yield b
    b.close()


@pytest.fixture
def builder(network, backend, ledger):
    return OperationBuilder(network, backend, BalanceStoreReader(ledger, network))


@pytest.fixture(scope="module")
def owner():
    return DecryptionKey.derive(b"builder-test-owner-01", 0)


# ═══════════════════════════════════════════════════════════════════
#  Proof-free operations
# ═══════════════════════════════════════════════════════════════════

class TestPlainOperations:

    def test_register(self, builder, owner):
        p = builder.register(ALICE, TOKEN, owner.encryption_key())
        assert p.name == FN_REGISTER
        assert p.arguments == (TOKEN, owner.encryption_key().to_bytes())
        assert p.function_id == f"{builder.network.module_address}::confidential_asset::register"

    def test_register_accepts_hex(self, builder, owner):
        p = builder.register(ALICE, TOKEN, owner.encryption_key().hex())
        assert p.arguments[1] == owner.encryption_key().to_bytes()

    def test_register_bad_key(self, builder):
        with pytest.raises(InvalidKeyLength):
            builder.register(ALICE, TOKEN, b"\x02" * 32)

    def test_deposit_defaults_to_self(self, builder):
        p = builder.deposit(ALICE, TOKEN, 1000)
        assert p.name == FN_DEPOSIT
        assert p.arguments == (TOKEN, ALICE, "1000")

    def test_deposit_to_other(self, builder):
        assert builder.deposit(ALICE, TOKEN, 5, BOB).arguments[1] == BOB

    def test_deposit_range(self, builder):
        with pytest.raises(RangeError):
            builder.deposit(ALICE, TOKEN, -1)
        with pytest.raises(RangeError):
            builder.deposit(ALICE, TOKEN, 1 << 64)

    def test_rollover_variants(self, builder):
        assert builder.rollover(ALICE, TOKEN).name == FN_ROLLOVER
        assert builder.rollover(ALICE, TOKEN, with_freeze=True).name == FN_ROLLOVER_FREEZE
        assert builder.rollover(ALICE, TOKEN).arguments == (TOKEN,)


class TestCoerceBalance:

    def test_bytes(self, owner):
        bal = encrypt_amount(3, owner.encryption_key())
        assert coerce_balance(bal.to_bytes()) == bal

    def test_chunk_list(self, owner):
        bal = encrypt_amount(3, owner.encryption_key())
        assert coerce_balance(list(bal.chunks)) == bal

    def test_wrong_arity(self, owner):
        short = encrypt_amount(3, owner.encryption_key(), arity=AMOUNT_CHUNKS)
        with pytest.raises(ChunkArityMismatch):
            coerce_balance(short)
        with pytest.raises(ChunkArityMismatch):
            coerce_balance(list(short.chunks))


# ═══════════════════════════════════════════════════════════════════
#  Proof-bearing operations
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestProofOperations:

    async def test_withdraw_arguments(self, builder, owner):
        bal = encrypt_amount(1000, owner.encryption_key())
        p = await builder.withdraw(owner, bal, 250, ALICE, TOKEN)
        assert p.name == FN_WITHDRAW
        token, recipient, amount, new_balance, range_proof, sigma = p.arguments
        assert (token, recipient, amount) == (TOKEN, ALICE, "250")
        assert len(new_balance) == BALANCE_CHUNKS * CHUNK_CIPHERTEXT_LENGTH
        assert decrypt_balance(ConfidentialBalance.from_bytes(new_balance), owner) == 750
        assert isinstance(range_proof, bytes) and isinstance(sigma, bytes)

    async def test_withdraw_insufficient_before_proving(self, network, counting, owner):
        builder = OperationBuilder(network, counting)
        bal = encrypt_amount(10, owner.encryption_key())
        with pytest.raises(InsufficientBalance):
            await builder.withdraw(owner, bal, 11, ALICE, TOKEN)
        assert counting.submitted == 0

    async def test_withdraw_arity_before_proving(self, network, counting, owner):
        builder = OperationBuilder(network, counting)
        short = encrypt_amount(10, owner.encryption_key(), arity=AMOUNT_CHUNKS)
        with pytest.raises(ChunkArityMismatch):
            await builder.withdraw(owner, short, 1, ALICE, TOKEN)
        assert counting.submitted == 0

    async def test_normalize_arguments(self, builder, owner):
        bal = encrypt_amount(77, owner.encryption_key())
        p = await builder.normalize(owner, bal, 77, ALICE, TOKEN)
        assert p.name == FN_NORMALIZE
        assert p.arguments[0] == TOKEN
        assert len(p.arguments) == 4

    async def test_rotate_arguments(self, builder, owner):
        new = DecryptionKey.generate()
        bal = encrypt_amount(10, owner.encryption_key())
        p = await builder.rotate_key(owner, new, bal, ALICE, TOKEN)
        assert p.name == FN_ROTATE
        assert p.arguments[1] == new.encryption_key().to_bytes()
        new_balance = ConfidentialBalance.from_bytes(p.arguments[2])
        assert decrypt_balance(new_balance, new) == 10

        p = await builder.rotate_key(owner, new, bal, ALICE, TOKEN, with_unfreeze=True)
        assert p.name == FN_ROTATE_UNFREEZE

    async def test_transfer_arguments(self, builder, owner):
        recipient = DecryptionKey.generate()
        auditor = DecryptionKey.generate()
        bal = encrypt_amount(1000, owner.encryption_key())
        p = await builder.transfer_coin(
            owner, bal, 400, recipient.encryption_key(), [auditor.encryption_key()],
            ALICE, TOKEN, BOB,
        )
        assert p.name == FN_TRANSFER
        assert len(p.arguments) == 9
        (token, to, new_balance, recipient_amount, auditor_keys,
         auditor_amounts, _range_new, _range_amount, _sigma) = p.arguments
        assert (token, to) == (TOKEN, BOB)
        assert auditor_keys == auditor.encryption_key().to_bytes()
        amount = ConfidentialBalance.from_bytes(recipient_amount, AMOUNT_CHUNKS)
        assert decrypt_balance(amount, recipient) == 400
        audited = ConfidentialBalance.from_bytes(auditor_amounts, AMOUNT_CHUNKS)
        assert decrypt_balance(audited, auditor) == 400

    async def test_transfer_prepends_ledger_auditors(self, ledger, network, backend, owner):
        global_auditor = DecryptionKey.generate().encryption_key()
        token_auditor = DecryptionKey.generate().encryption_key()
        extra = DecryptionKey.generate().encryption_key()
        ledger.set_global_auditor(global_auditor)
        ledger.set_token_auditor(TOKEN, token_auditor)
        builder = OperationBuilder(network, backend, BalanceStoreReader(ledger, network))

        bal = encrypt_amount(50, owner.encryption_key())
        p = await builder.transfer_coin(
            owner, bal, 5, DecryptionKey.generate().encryption_key(), [extra],
            ALICE, TOKEN, BOB,
        )
        expected = global_auditor.to_bytes() + token_auditor.to_bytes() + extra.to_bytes()
        assert p.arguments[4] == expected
        assert len(p.arguments[5]) == 3 * AMOUNT_CHUNKS * CHUNK_CIPHERTEXT_LENGTH

    async def test_transfer_without_reader_refuses(self, network, counting, owner):
        builder = OperationBuilder(network, counting)
        bal = encrypt_amount(50, owner.encryption_key())
        with pytest.raises(ConfigError):
            await builder.transfer_coin(
                owner, bal, 5, DecryptionKey.generate().encryption_key(), [],
                ALICE, TOKEN, BOB,
            )
        assert counting.submitted == 0

    async def test_transfer_amount_range(self, builder, owner):
        bal = encrypt_amount(10, owner.encryption_key())
        with pytest.raises(RangeError):
            await builder.transfer_coin(
                owner, bal, -5, DecryptionKey.generate().encryption_key(), [],
                ALICE, TOKEN, BOB,
            )


# ═══════════════════════════════════════════════════════════════════
#  Payload rendering
# ═══════════════════════════════════════════════════════════════════

class TestPayload:

    def test_json_arguments(self):
        p = EntryFunction("0xcafe", "confidential_asset", "deposit_to",
                          ("0x10c0", b"\x01\x02", 7, True))
        body = p.to_json()
        assert body["function"] == "0xcafe::confidential_asset::deposit_to"
        assert body["arguments"] == ["0x10c0", "0x0102", "7", True]

    def test_transaction_hash_is_stable(self):
        p = EntryFunction("0xcafe", "confidential_asset", "register", ("0x10c0",))
        a = Transaction(sender=ALICE, sequence_number=3, payload=p)
        b = Transaction(sender=ALICE, sequence_number=3, payload=p, max_gas_amount=1)
        c = Transaction(sender=ALICE, sequence_number=4, payload=p)
        assert a.hash == b.hash
        assert a.hash != c.hash
        assert a.hash.startswith("0x") and len(a.hash) == 66

    def test_transaction_json(self):
        p = EntryFunction("0xcafe", "confidential_asset", "register")
        body = Transaction(sender=ALICE, sequence_number=9, payload=p,
                           expiration_secs=100).to_json()
        assert body["sequence_number"] == "9"
        assert body["expiration_timestamp_secs"] == "100"

    def test_result_from_json(self):
        r = TransactionResult.from_json(
            {"hash": "0xab", "success": True, "vm_status": "Executed successfully",
             "version": "12"}
        )
        assert r.success and r.version == 12
