"""
Chunked balance codec.

A plaintext amount is split little-endian into fixed-radix chunks and each
chunk is encrypted on its own, so that decryption only ever has to solve a
small discrete log.  The chunk layout is a protocol constant shared with
the ledger:

    amount = sum_i  chunk_i * RADIX^i        0 <= chunk_i < RADIX

Balances use ``BALANCE_CHUNKS`` chunks, transfer and withdrawal amounts use
``AMOUNT_CHUNKS`` (u64).  Homomorphic additions can push a chunk past
``RADIX``; the weighted sum still equals the logical balance, the store is
merely *un-normalized* until it is re-chunked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .curve import Scalar
from .elgamal import CHUNK_CIPHERTEXT_LENGTH, ChunkCiphertext, decrypt_chunk
from .errors import ChunkArityMismatch, RangeError
from .keys import DecryptionKey, EncryptionKey

logger = logging.getLogger("confidential_balance.chunked")

# ── protocol constants ──────────────────────────────────────────────────
CHUNK_BITS = 16
RADIX = 1 << CHUNK_BITS
BALANCE_CHUNKS = 8
AMOUNT_CHUNKS = 4
EXTENDED_CHUNK_BITS = 32

MAX_BALANCE = RADIX ** BALANCE_CHUNKS - 1
MAX_AMOUNT = RADIX ** AMOUNT_CHUNKS - 1


def chunk_weight(index: int) -> int:
    return RADIX ** index


def encode(amount: int, arity: int = BALANCE_CHUNKS) -> Tuple[int, ...]:
    """Split ``amount`` into ``arity`` little-endian chunks."""
    if amount < 0:
        raise RangeError(f"amount must be non-negative, got {amount}")
    if amount >= RADIX ** arity:
        raise RangeError(
            f"amount {amount} does not fit in {arity} chunks of {CHUNK_BITS} bits"
        )
    return tuple((amount >> (CHUNK_BITS * i)) & (RADIX - 1) for i in range(arity))


def decode(chunks: Iterable[int]) -> int:
    """Weighted sum of chunk values; chunks above the radix are allowed."""
    return sum(c * chunk_weight(i) for i, c in enumerate(chunks))


def check_amount(amount: int) -> int:
    """Validate a transfer/withdraw amount (u64)."""
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise RangeError(f"amount must be an integer, got {type(amount).__name__}")
    encode(amount, AMOUNT_CHUNKS)
    return amount


@dataclass(frozen=True)
class ConfidentialBalance:
    """
    Fixed-arity sequence of encrypted chunks.

    Serialised as the concatenation of every chunk's C and D in chunk
    order, with no length prefixes; the arity is implied by the context
    (balance vs. amount).
    """

    chunks: Tuple[ChunkCiphertext, ...]

    @property
    def arity(self) -> int:
        return len(self.chunks)

    @classmethod
    def zero(cls, arity: int = BALANCE_CHUNKS) -> ConfidentialBalance:
        return cls(chunks=tuple(ChunkCiphertext.zero() for _ in range(arity)))

    @classmethod
    def from_plaintext(cls, amount: int, arity: int = BALANCE_CHUNKS) -> ConfidentialBalance:
        """Zero-randomness encoding, what the ledger credits on deposit."""
        return cls(chunks=tuple(ChunkCiphertext.plaintext(c) for c in encode(amount, arity)))

    @classmethod
    def from_bytes(cls, data: bytes, arity: int = BALANCE_CHUNKS) -> ConfidentialBalance:
        count = len(data) // CHUNK_CIPHERTEXT_LENGTH
        if count != arity or len(data) % CHUNK_CIPHERTEXT_LENGTH:
            raise ChunkArityMismatch(arity, count)
        return cls(chunks=tuple(
            ChunkCiphertext.from_bytes(
                data[i * CHUNK_CIPHERTEXT_LENGTH:(i + 1) * CHUNK_CIPHERTEXT_LENGTH]
            )
            for i in range(count)
        ))

    def to_bytes(self) -> bytes:
        return b"".join(c.to_bytes() for c in self.chunks)

    def require_arity(self, arity: int) -> ConfidentialBalance:
        if self.arity != arity:
            raise ChunkArityMismatch(arity, self.arity)
        return self

    def widen(self, arity: int) -> ConfidentialBalance:
        """Pad with zero chunks up to ``arity`` (amount -> balance layout)."""
        if arity < self.arity:
            raise ChunkArityMismatch(arity, self.arity)
        pad = tuple(ChunkCiphertext.zero() for _ in range(arity - self.arity))
        return ConfidentialBalance(chunks=self.chunks + pad)

    def is_zero(self) -> bool:
        return all(c.C.is_identity() and c.D.is_identity() for c in self.chunks)

    def __add__(self, o: ConfidentialBalance) -> ConfidentialBalance:
        if not isinstance(o, ConfidentialBalance):
            return NotImplemented
        o.require_arity(self.arity)
        return ConfidentialBalance(chunks=tuple(a + b for a, b in zip(self.chunks, o.chunks)))

    def __sub__(self, o: ConfidentialBalance) -> ConfidentialBalance:
        if not isinstance(o, ConfidentialBalance):
            return NotImplemented
        o.require_arity(self.arity)
        return ConfidentialBalance(chunks=tuple(a - b for a, b in zip(self.chunks, o.chunks)))

    def __len__(self) -> int:
        return len(self.chunks)


def encrypt_amount(
    amount: int,
    encryption_key: EncryptionKey,
    randomness: Optional[Sequence[Scalar]] = None,
    arity: int = BALANCE_CHUNKS,
) -> ConfidentialBalance:
    """
    Encrypt every chunk of ``amount`` independently.

    Parameters
    ----------
    amount : int
        Plaintext, must fit ``arity`` chunks.
    encryption_key : EncryptionKey
        Recipient key.
    randomness : sequence of Scalar, optional
        One scalar per chunk; fresh random scalars when omitted.
    arity : int
        Chunk count (``BALANCE_CHUNKS`` or ``AMOUNT_CHUNKS``).
    """
    values = encode(amount, arity)
    if randomness is None:
        randomness = [Scalar.random() for _ in range(arity)]
    if len(randomness) != arity:
        raise ChunkArityMismatch(arity, len(randomness))
    return ConfidentialBalance(chunks=tuple(
        ChunkCiphertext.encrypt(v, encryption_key, r)
        for v, r in zip(values, randomness)
    ))


def decrypt_chunks(
    balance: ConfidentialBalance,
    decryption_key: DecryptionKey,
    max_chunk_bits: int = CHUNK_BITS,
) -> List[int]:
    """Per-chunk plaintexts; ``DecryptionMismatch`` if one is out of bound."""
    return [
        decrypt_chunk(chunk, decryption_key, i, max_chunk_bits)
        for i, chunk in enumerate(balance.chunks)
    ]


def decrypt_balance(
    balance: ConfidentialBalance,
    decryption_key: DecryptionKey,
    max_chunk_bits: int = CHUNK_BITS,
) -> int:
    return decode(decrypt_chunks(balance, decryption_key, max_chunk_bits))


def decrypt_balance_lenient(
    balance: ConfidentialBalance,
    decryption_key: DecryptionKey,
) -> int:
    """
    Decrypt a possibly un-normalized balance.

    Each chunk is searched within ``CHUNK_BITS`` first and, failing that,
    within ``EXTENDED_CHUNK_BITS``.
    """
    values: List[int] = []
    for i, chunk in enumerate(balance.chunks):
        value = chunk.decrypt(decryption_key, CHUNK_BITS)
        if value is None:
            logger.debug("chunk %d above %d bits, widening search", i, CHUNK_BITS)
            value = decrypt_chunk(chunk, decryption_key, i, EXTENDED_CHUNK_BITS)
        values.append(value)
    return decode(values)
