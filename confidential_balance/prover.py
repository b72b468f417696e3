"""
Reference proof backend over secp256k1.

Every proof kind is one ``LinearStatement`` plus range proofs on the freshly
encrypted chunks.  With weights  w_i = RADIX^i,  key  P = s^-1*H  and the
current balance chunks  (C_i, D_i):

    sum w_i C_i - s * sum w_i D_i  =  b * G            (b = balance)

so a prover that knows ``s`` and the new chunk values  b'_i  can show the
plaintext moved by exactly the public (or committed) amount without ever
revealing ``b``:

withdraw       H = s*P
               sum w_i C_i - v*G = s * sum w_i D_i + sum b'_i (w_i G)
               C'_i = b'_i G + r'_i H,   D'_i = r'_i P
transfer       as withdraw, with  + sum a_j (w_j G)  in place of  v*G
               Ca_j = a_j G + ra_j H,    Dr_j = ra_j P_recipient,
               Dk_j = ra_j P_k  for every auditor key k
normalization  withdraw with v = 0
key rotation   H = s*P,  H = s_new*P_new,  new chunks under P_new

Range proofs bound every  b'_i  (and every  a_j) to ``CHUNK_BITS``, which is
what keeps a negative amount or a wrapped balance from passing the
weighted-sum check.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .backend import (
    KeyRotationProof,
    NormalizationProof,
    ProgressCallback,
    ProofBackend,
    TransferProof,
    WithdrawProof,
)
from .chunked import (
    AMOUNT_CHUNKS,
    BALANCE_CHUNKS,
    CHUNK_BITS,
    RADIX,
    ConfidentialBalance,
    check_amount,
    decrypt_balance,
    decrypt_balance_lenient,
    encode,
)
from .curve import Scalar, Point, G, H, multi_mul
from .elgamal import ChunkCiphertext
from .errors import InsufficientBalance, ValidationError
from .keys import DecryptionKey, EncryptionKey
from .range_proof import prove_range, verify_range
from .sigma import LinearStatement, SigmaProof
from .transcript import TAG_NORMALIZE, TAG_ROTATE, TAG_TRANSFER, TAG_WITHDRAW

logger = logging.getLogger("confidential_balance.prover")

_WEIGHTS = [Scalar(RADIX ** i) for i in range(BALANCE_CHUNKS)]
_WEIGHTED_G = [w * G for w in _WEIGHTS]

_BALANCE_CONTEXT = b"/new-balance"
_AMOUNT_CONTEXT = b"/amount"


def _weighted(points: Iterable[Point]) -> Point:
    pts = list(points)
    return multi_mul(_WEIGHTS[: len(pts)], pts)


def _noop(_stage: str) -> None:
    pass


# ── statements (shared by prover and verifier) ──────────────────────────
def _add_new_chunks(
    st: LinearStatement,
    new_balance: ConfidentialBalance,
    key: Point,
    b_offset: int,
    r_offset: int,
) -> None:
    """C'_i = b'_i G + r'_i H  and  D'_i = r'_i P  for every chunk."""
    for i, chunk in enumerate(new_balance.chunks):
        st.add(chunk.C, (b_offset + i, G), (r_offset + i, H))
    for i, chunk in enumerate(new_balance.chunks):
        st.add(chunk.D, (r_offset + i, key))


def _withdraw_statement(
    key: EncryptionKey,
    balance: ConfidentialBalance,
    amount: int,
    new_balance: ConfidentialBalance,
) -> LinearStatement:
    # witness: s | b'_0..7 | r'_0..7
    n = BALANCE_CHUNKS
    st = LinearStatement(num_witnesses=1 + 2 * n)
    st.add(H, (0, key.point))
    lhs = _weighted(c.C for c in balance.chunks) - (Scalar(amount) * G)
    st.add(
        lhs,
        (0, _weighted(c.D for c in balance.chunks)),
        *[(1 + i, _WEIGHTED_G[i]) for i in range(n)],
    )
    _add_new_chunks(st, new_balance, key.point, 1, 1 + n)
    return st


def _transfer_statement(
    key: EncryptionKey,
    balance: ConfidentialBalance,
    new_balance: ConfidentialBalance,
    recipient_key: EncryptionKey,
    recipient_amount: ConfidentialBalance,
    auditor_keys: Sequence[EncryptionKey],
    auditor_amounts: Sequence[ConfidentialBalance],
) -> LinearStatement:
    # witness: s | b'_0..7 | r'_0..7 | a_0..3 | ra_0..3
    n, m = BALANCE_CHUNKS, AMOUNT_CHUNKS
    a_off, ra_off = 1 + 2 * n, 1 + 2 * n + m
    st = LinearStatement(num_witnesses=1 + 2 * n + 2 * m)
    st.add(H, (0, key.point))
    st.add(
        _weighted(c.C for c in balance.chunks),
        (0, _weighted(c.D for c in balance.chunks)),
        *[(1 + i, _WEIGHTED_G[i]) for i in range(n)],
        *[(a_off + j, _WEIGHTED_G[j]) for j in range(m)],
    )
    _add_new_chunks(st, new_balance, key.point, 1, 1 + n)
    for j, chunk in enumerate(recipient_amount.chunks):
        st.add(chunk.C, (a_off + j, G), (ra_off + j, H))
    for j, chunk in enumerate(recipient_amount.chunks):
        st.add(chunk.D, (ra_off + j, recipient_key.point))
    for auditor, amount in zip(auditor_keys, auditor_amounts):
        for j, chunk in enumerate(amount.chunks):
            st.add(chunk.D, (ra_off + j, auditor.point))
    return st


def _rotation_statement(
    old_key: EncryptionKey,
    new_key: EncryptionKey,
    balance: ConfidentialBalance,
    new_balance: ConfidentialBalance,
) -> LinearStatement:
    # witness: s_old | s_new | b'_0..7 | r'_0..7
    n = BALANCE_CHUNKS
    st = LinearStatement(num_witnesses=2 + 2 * n)
    st.add(H, (0, old_key.point))
    st.add(H, (1, new_key.point))
    st.add(
        _weighted(c.C for c in balance.chunks),
        (0, _weighted(c.D for c in balance.chunks)),
        *[(2 + i, _WEIGHTED_G[i]) for i in range(n)],
    )
    _add_new_chunks(st, new_balance, new_key.point, 2, 2 + n)
    return st


def _encrypt_chunks(
    values: Sequence[int],
    key: EncryptionKey,
) -> Tuple[ConfidentialBalance, List[Scalar]]:
    randomness = [Scalar.random() for _ in values]
    balance = ConfidentialBalance(chunks=tuple(
        ChunkCiphertext.encrypt(v, key, r) for v, r in zip(values, randomness)
    ))
    return balance, randomness


def _verify_sigma(
    st: LinearStatement,
    proof_bytes: bytes,
    tag: bytes,
    context: bytes,
) -> bool:
    try:
        proof = SigmaProof.from_bytes(proof_bytes, len(st.relations), st.num_witnesses)
    except ValidationError:
        return False
    return proof.verify(st, tag, context)


def _new_balance_range_ok(new_balance: ConfidentialBalance, proof: bytes, context: bytes) -> bool:
    return verify_range(
        [c.C for c in new_balance.chunks], proof, CHUNK_BITS, context + _BALANCE_CONTEXT
    )


# ── backend ─────────────────────────────────────────────────────────────
class ReferenceProofBackend(ProofBackend):
    """
    Sigma-protocol backend built on ``sigma`` and ``range_proof``.

    Inputs are validated before any group operation: arity first, then the
    amount, then the plaintext (decryption), so local errors are cheap.
    """

    def prove_withdraw(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        amount: int,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> WithdrawProof:
        progress = progress or _noop
        progress("validate")
        balance.require_arity(BALANCE_CHUNKS)
        check_amount(amount)

        progress("decrypt")
        available = decrypt_balance(balance, decryption_key)
        if amount > available:
            raise InsufficientBalance(amount, available)
        return self._prove_rechunk(
            decryption_key, balance, available - amount, amount,
            TAG_WITHDRAW, context, progress, WithdrawProof,
        )

    def prove_normalization(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        plaintext: int,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> NormalizationProof:
        progress = progress or _noop
        progress("validate")
        balance.require_arity(BALANCE_CHUNKS)
        # a wrong plaintext surfaces as an unsatisfied relation
        return self._prove_rechunk(
            decryption_key, balance, plaintext, 0,
            TAG_NORMALIZE, context, progress, NormalizationProof,
        )

    def _prove_rechunk(
        self,
        decryption_key: DecryptionKey,
        balance: ConfidentialBalance,
        new_plaintext: int,
        amount: int,
        tag: bytes,
        context: bytes,
        progress: ProgressCallback,
        result_type: Callable,
    ):
        key = decryption_key.encryption_key()
        values = encode(new_plaintext, BALANCE_CHUNKS)

        progress("encrypt")
        new_balance, randomness = _encrypt_chunks(values, key)

        progress("sigma")
        st = _withdraw_statement(key, balance, amount, new_balance)
        witness = [decryption_key.scalar, *[Scalar(v) for v in values], *randomness]
        sigma = SigmaProof.prove(st, witness, tag, context)

        progress("range")
        range_proof = prove_range(values, randomness, CHUNK_BITS, context + _BALANCE_CONTEXT)
        progress("done")
        return result_type(
            new_balance=new_balance,
            sigma_proof=sigma.to_bytes(),
            range_proof=range_proof,
        )

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
        progress = progress or _noop
        progress("validate")
        balance.require_arity(BALANCE_CHUNKS)
        check_amount(amount)

        progress("decrypt")
        available = decrypt_balance(balance, decryption_key)
        if amount > available:
            raise InsufficientBalance(amount, available)

        progress("encrypt")
        key = decryption_key.encryption_key()
        new_values = encode(available - amount, BALANCE_CHUNKS)
        new_balance, new_randomness = _encrypt_chunks(new_values, key)
        amount_values = encode(amount, AMOUNT_CHUNKS)
        recipient_amount, amount_randomness = _encrypt_chunks(amount_values, recipient_key)
        auditor_amounts = tuple(
            ConfidentialBalance(chunks=tuple(
                ChunkCiphertext(C=chunk.C, D=r * auditor.point)
                for chunk, r in zip(recipient_amount.chunks, amount_randomness)
            ))
            for auditor in auditor_keys
        )

        progress("sigma")
        st = _transfer_statement(
            key, balance, new_balance,
            recipient_key, recipient_amount,
            auditor_keys, auditor_amounts,
        )
        witness = [
            decryption_key.scalar,
            *[Scalar(v) for v in new_values],
            *new_randomness,
            *[Scalar(a) for a in amount_values],
            *amount_randomness,
        ]
        sigma = SigmaProof.prove(st, witness, TAG_TRANSFER, context)

        progress("range")
        range_new = prove_range(
            new_values, new_randomness, CHUNK_BITS, context + _BALANCE_CONTEXT
        )
        range_amount = prove_range(
            amount_values, amount_randomness, CHUNK_BITS, context + _AMOUNT_CONTEXT
        )
        progress("done")
        return TransferProof(
            new_balance=new_balance,
            recipient_amount=recipient_amount,
            auditor_amounts=auditor_amounts,
            sigma_proof=sigma.to_bytes(),
            range_proof_new_balance=range_new,
            range_proof_amount=range_amount,
        )

    def prove_key_rotation(
        self,
        old_key: DecryptionKey,
        new_key: DecryptionKey,
        balance: ConfidentialBalance,
        *,
        context: bytes = b"",
        progress: Optional[ProgressCallback] = None,
    ) -> KeyRotationProof:
        progress = progress or _noop
        progress("validate")
        balance.require_arity(BALANCE_CHUNKS)

        progress("decrypt")
        # rotation re-chunks, so an un-normalized balance is acceptable here
        plaintext = decrypt_balance_lenient(balance, old_key)
        values = encode(plaintext, BALANCE_CHUNKS)

        progress("encrypt")
        new_public = new_key.encryption_key()
        new_balance, randomness = _encrypt_chunks(values, new_public)

        progress("sigma")
        st = _rotation_statement(old_key.encryption_key(), new_public, balance, new_balance)
        witness = [old_key.scalar, new_key.scalar, *[Scalar(v) for v in values], *randomness]
        sigma = SigmaProof.prove(st, witness, TAG_ROTATE, context)

        progress("range")
        range_proof = prove_range(values, randomness, CHUNK_BITS, context + _BALANCE_CONTEXT)
        progress("done")
        return KeyRotationProof(
            new_balance=new_balance,
            sigma_proof=sigma.to_bytes(),
            range_proof=range_proof,
        )

    # verifiers --------------------------------------------------------------
    def verify_withdraw(
        self,
        encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        amount: int,
        proof: WithdrawProof,
        *,
        context: bytes = b"",
    ) -> bool:
        if balance.arity != BALANCE_CHUNKS or proof.new_balance.arity != BALANCE_CHUNKS:
            return False
        if not 0 <= amount < RADIX ** AMOUNT_CHUNKS:
            return False
        st = _withdraw_statement(encryption_key, balance, amount, proof.new_balance)
        return (
            _verify_sigma(st, proof.sigma_proof, TAG_WITHDRAW, context)
            and _new_balance_range_ok(proof.new_balance, proof.range_proof, context)
        )

    def verify_normalization(
        self,
        encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        proof: NormalizationProof,
        *,
        context: bytes = b"",
    ) -> bool:
        if balance.arity != BALANCE_CHUNKS or proof.new_balance.arity != BALANCE_CHUNKS:
            return False
        st = _withdraw_statement(encryption_key, balance, 0, proof.new_balance)
        return (
            _verify_sigma(st, proof.sigma_proof, TAG_NORMALIZE, context)
            and _new_balance_range_ok(proof.new_balance, proof.range_proof, context)
        )

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
        if balance.arity != BALANCE_CHUNKS or proof.new_balance.arity != BALANCE_CHUNKS:
            return False
        if proof.recipient_amount.arity != AMOUNT_CHUNKS:
            return False
        if len(proof.auditor_amounts) != len(auditor_keys):
            return False
        for amount in proof.auditor_amounts:
            if amount.arity != AMOUNT_CHUNKS:
                return False
            # auditors must see the very same amount commitment
            if any(a.C != r.C for a, r in zip(amount.chunks, proof.recipient_amount.chunks)):
                return False
        st = _transfer_statement(
            encryption_key, balance, proof.new_balance,
            recipient_key, proof.recipient_amount,
            auditor_keys, proof.auditor_amounts,
        )
        return (
            _verify_sigma(st, proof.sigma_proof, TAG_TRANSFER, context)
            and _new_balance_range_ok(proof.new_balance, proof.range_proof_new_balance, context)
            and verify_range(
                [c.C for c in proof.recipient_amount.chunks],
                proof.range_proof_amount,
                CHUNK_BITS,
                context + _AMOUNT_CONTEXT,
            )
        )

    def verify_key_rotation(
        self,
        old_encryption_key: EncryptionKey,
        new_encryption_key: EncryptionKey,
        balance: ConfidentialBalance,
        proof: KeyRotationProof,
        *,
        context: bytes = b"",
    ) -> bool:
        if balance.arity != BALANCE_CHUNKS or proof.new_balance.arity != BALANCE_CHUNKS:
            return False
        st = _rotation_statement(
            old_encryption_key, new_encryption_key, balance, proof.new_balance
        )
        return (
            _verify_sigma(st, proof.sigma_proof, TAG_ROTATE, context)
            and _new_balance_range_ok(proof.new_balance, proof.range_proof, context)
        )
