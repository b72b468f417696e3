"""
Twisted ElGamal encryption of balance chunks.

A chunk value *m* encrypted to key  P = s^-1 * H  with randomness *r* is

    C = m*G + r*H          (a Pedersen commitment to m)
    D = r*P                (the decryption handle)

and the key holder recovers  m*G = C - s*D.  Because C is an ordinary
Pedersen commitment, range proofs and sigma proofs work on it directly,
and encryptions of the same amount to several keys can share one C.

Security:
- Additively homomorphic: (C1+C2, D1+D2) encrypts m1+m2 under the same
  key with randomness r1+r2, so pending deposits and rollover need no
  proof.
- Recovering *m* from m*G is a discrete-log search, which is why chunk
  values are kept small (see ``chunked``).

References
----------
- Chen, Ma, Tang, Au (2020). "PGC: Decentralized Confidential Payment
  System with Auditability."  (twisted ElGamal)
- Shanks (1971). Baby-step giant-step.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple

from .curve import Scalar, Point, G, H, POINT_BYTES
from .errors import DecryptionMismatch, InvalidEncoding
from .keys import DecryptionKey, EncryptionKey

CHUNK_CIPHERTEXT_LENGTH = 2 * POINT_BYTES


@dataclass(frozen=True)
class ChunkCiphertext:
    """One encrypted chunk  (C, D)."""

    C: Point
    D: Point

    @staticmethod
    def encrypt(
        value: int,
        key: EncryptionKey,
        randomness: Optional[Scalar] = None,
    ) -> ChunkCiphertext:
        """Enc_P(m; r) = (m*G + r*H, r*P)."""
        r = randomness if randomness is not None else Scalar.random()
        return ChunkCiphertext(
            C=(Scalar(value) * G) + (r * H),
            D=r * key.point,
        )

    @staticmethod
    def plaintext(value: int) -> ChunkCiphertext:
        """Zero-randomness encryption (m*G, O), valid under every key."""
        return ChunkCiphertext(C=Scalar(value) * G, D=Point.identity())

    @staticmethod
    def zero() -> ChunkCiphertext:
        return ChunkCiphertext(C=Point.identity(), D=Point.identity())

    def value_point(self, key: DecryptionKey) -> Point:
        """m*G = C - s*D."""
        return self.C - (key.scalar * self.D)

    def decrypt(self, key: DecryptionKey, max_bits: int) -> Optional[int]:
        """Chunk value, or ``None`` if it is not below 2^max_bits."""
        return solve_discrete_log(self.value_point(key), max_bits)

    def opens_to(self, value: int, randomness: Scalar, key: EncryptionKey) -> bool:
        return self == ChunkCiphertext.encrypt(value, key, randomness)

    def __add__(self, o: ChunkCiphertext) -> ChunkCiphertext:
        if not isinstance(o, ChunkCiphertext):
            return NotImplemented
        return ChunkCiphertext(C=self.C + o.C, D=self.D + o.D)

    def __sub__(self, o: ChunkCiphertext) -> ChunkCiphertext:
        if not isinstance(o, ChunkCiphertext):
            return NotImplemented
        return ChunkCiphertext(C=self.C - o.C, D=self.D - o.D)

    def to_bytes(self) -> bytes:
        return self.C.to_bytes() + self.D.to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> ChunkCiphertext:
        if len(data) != CHUNK_CIPHERTEXT_LENGTH:
            raise InvalidEncoding(
                f"chunk ciphertext needs {CHUNK_CIPHERTEXT_LENGTH} bytes, got {len(data)}"
            )
        return cls(
            C=Point.from_bytes(data[:POINT_BYTES]),
            D=Point.from_bytes(data[POINT_BYTES:]),
        )


# ── bounded discrete log ────────────────────────────────────────────────
@lru_cache(maxsize=None)
def _baby_steps(bits: int) -> Tuple[Dict[bytes, int], Point]:
    """
    Table  {j*G : j}  for j < 2^ceil(bits/2), plus the giant stride.

    Built once per bound and shared by every decryption.
    """
    size = 1 << ((bits + 1) // 2)
    table: Dict[bytes, int] = {}
    acc = Point.identity()
    for j in range(size):
        table[acc.to_bytes()] = j
        acc = acc + G
    # acc == size*G
    return table, -acc


def solve_discrete_log(target: Point, max_bits: int) -> Optional[int]:
    """
    Find  0 <= m < 2^max_bits  with  m*G == target  (baby-step giant-step).

    Returns ``None`` when no such *m* exists.
    """
    table, stride = _baby_steps(max_bits)
    size = len(table)
    limit = 1 << max_bits
    giant = target
    for i in range((limit + size - 1) // size):
        j = table.get(giant.to_bytes())
        if j is not None:
            m = i * size + j
            return m if m < limit else None
        giant = giant + stride
    return None


def decrypt_chunk(
    chunk: ChunkCiphertext,
    key: DecryptionKey,
    index: int,
    max_bits: int,
) -> int:
    """Like ``ChunkCiphertext.decrypt`` but raises ``DecryptionMismatch``."""
    value = chunk.decrypt(key, max_bits)
    if value is None:
        raise DecryptionMismatch(index, max_bits)
    return value
