"""
secp256k1 group arithmetic for balance ciphertexts and proofs.

Scalar multiplication and point addition are delegated to ``coincurve``
(libsecp256k1); scalar-field arithmetic stays in Python since it is cheap.

Two generators are exposed:

- ``G``: the standard base point; amounts live in the exponent of ``G``.
- ``H``: a NUMS point with unknown discrete log w.r.t. ``G``; ciphertext
  randomness and encryption keys are multiples of ``H``.

Wire encoding of a point is SEC 1 compressed (33 bytes).  The identity is
encoded as 33 zero bytes, which is what a zero-randomness ciphertext's
second component serialises to.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Iterable, List, Optional, Sequence

from coincurve import PrivateKey as _SK, PublicKey as _PK

from .errors import InvalidEncoding

# ── secp256k1 constants ─────────────────────────────────────────────────
ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
FIELD_PRIME = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
SCALAR_BYTES = 32
POINT_BYTES = 33
IDENTITY_BYTES = b"\x00" * POINT_BYTES


# ── Scalar  (Z_q) ───────────────────────────────────────────────────────
class Scalar:
    """Element of Z_q, q = ``ORDER``."""

    __slots__ = ("_v",)

    def __init__(self, value: int) -> None:
        self._v = value % ORDER

    @classmethod
    def zero(cls) -> Scalar:
        return cls(0)

    @classmethod
    def one(cls) -> Scalar:
        return cls(1)

    @classmethod
    def random(cls) -> Scalar:
        """Uniform in [1, q-1] via rejection sampling."""
        while True:
            c = int.from_bytes(secrets.token_bytes(SCALAR_BYTES), "big")
            if 0 < c < ORDER:
                return cls(c)

    @classmethod
    def from_bytes(cls, data: bytes) -> Scalar:
        """Strict decoding: exactly 32 bytes, value below the group order."""
        if len(data) != SCALAR_BYTES:
            raise InvalidEncoding(f"scalar needs {SCALAR_BYTES} bytes, got {len(data)}")
        v = int.from_bytes(data, "big")
        if v >= ORDER:
            raise InvalidEncoding("scalar out of range")
        return cls(v)

    @classmethod
    def from_bytes_reduce(cls, data: bytes) -> Scalar:
        """Hash-output safe: reduce arbitrary length modulo *q*."""
        return cls(int.from_bytes(data, "big"))

    def to_bytes(self) -> bytes:
        return self._v.to_bytes(SCALAR_BYTES, "big")

    @property
    def value(self) -> int:
        return self._v

    def is_zero(self) -> bool:
        return self._v == 0

    def __add__(self, o: Scalar) -> Scalar:
        if not isinstance(o, Scalar):
            return NotImplemented
        return Scalar(self._v + o._v)

    def __sub__(self, o: Scalar) -> Scalar:
        if not isinstance(o, Scalar):
            return NotImplemented
        return Scalar(self._v - o._v)

    def __mul__(self, o):
        if isinstance(o, Scalar):
            return Scalar(self._v * o._v)
        if isinstance(o, Point):
            return o._smul(self)
        return NotImplemented

    def __rmul__(self, o):
        if isinstance(o, int):
            return Scalar(o * self._v)
        return NotImplemented

    def __neg__(self) -> Scalar:
        return Scalar(-self._v)

    def inv(self) -> Scalar:
        """Multiplicative inverse via Fermat's little theorem."""
        if self._v == 0:
            raise ZeroDivisionError("cannot invert zero scalar")
        return Scalar(pow(self._v, ORDER - 2, ORDER))

    def __eq__(self, o: object) -> bool:
        if isinstance(o, Scalar):
            return self._v == o._v
        if isinstance(o, int):
            return self._v == o % ORDER
        return False

    def __hash__(self) -> int:
        return hash(self._v)

    def __bool__(self) -> bool:
        return self._v != 0

    def __repr__(self) -> str:
        # scalars are frequently secret; show only the width
        return f"Scalar(<{self._v.bit_length()} bits>)"


# ── Point  (secp256k1 group element) ────────────────────────────────────
class Point:
    """
    Point on secp256k1.

    The identity is a flag rather than a ``coincurve.PublicKey`` because
    libsecp256k1 cannot represent or serialise the point at infinity.
    """

    __slots__ = ("_pk", "_inf")

    def __init__(self, *, pk: Optional[_PK] = None, infinity: bool = False):
        self._pk: Optional[_PK] = pk
        self._inf: bool = infinity

    @classmethod
    def generator(cls) -> Point:
        return cls(pk=_SK(b"\x00" * 31 + b"\x01").public_key)

    @classmethod
    def nums_generator(cls, label: bytes) -> Point:
        """
        Hash-to-curve by try-and-increment.

        Candidate x-coordinates come from SHA-256 of ``label || counter``;
        the first x with x^3 + 7 a quadratic residue mod p gives the point
        with even y.  Nobody knows its discrete log w.r.t. ``G``.
        """
        for counter in range(256):
            digest = hashlib.sha256(label + counter.to_bytes(4, "big")).digest()
            x_int = int.from_bytes(digest, "big")
            if x_int == 0 or x_int >= FIELD_PRIME:
                continue
            y_sq = (pow(x_int, 3, FIELD_PRIME) + 7) % FIELD_PRIME
            if pow(y_sq, (FIELD_PRIME - 1) // 2, FIELD_PRIME) != 1:
                continue
            try:
                return cls(pk=_PK(b"\x02" + digest))
            except ValueError:
                continue
        raise RuntimeError("failed to derive NUMS generator")

    @classmethod
    def identity(cls) -> Point:
        return cls(infinity=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> Point:
        """Decode 33-byte SEC 1 compressed form (all zeros = identity)."""
        if len(data) != POINT_BYTES:
            raise InvalidEncoding(f"point needs {POINT_BYTES} bytes, got {len(data)}")
        if data == IDENTITY_BYTES:
            return cls.identity()
        try:
            return cls(pk=_PK(bytes(data)))
        except ValueError as exc:
            raise InvalidEncoding("bytes are not a secp256k1 point") from exc

    def to_bytes(self) -> bytes:
        if self._inf:
            return IDENTITY_BYTES
        return self._pk.format(compressed=True)  # type: ignore[union-attr]

    def is_identity(self) -> bool:
        return self._inf

    # group operations -------------------------------------------------------
    def _smul(self, s: Scalar) -> Point:
        if self._inf or s.is_zero():
            return Point.identity()
        copy = _PK(self._pk.format())  # type: ignore[union-attr]
        return Point(pk=copy.multiply(s.to_bytes()))

    def __neg__(self) -> Point:
        if self._inf:
            return self
        raw = bytearray(self._pk.format(compressed=True))  # type: ignore[union-attr]
        raw[0] ^= 0x01            # 0x02 <-> 0x03 flips y parity
        return Point(pk=_PK(bytes(raw)))

    def __add__(self, o: Point) -> Point:
        if not isinstance(o, Point):
            return NotImplemented
        if self._inf:
            return o
        if o._inf:
            return self
        if self._pk.format() == (-o)._pk.format():  # type: ignore[union-attr]
            return Point.identity()
        return Point(pk=_PK.combine_keys([self._pk, o._pk]))  # type: ignore[list-item]

    def __sub__(self, o: Point) -> Point:
        return self + (-o)

    def __rmul__(self, s) -> Point:
        if isinstance(s, Scalar):
            return self._smul(s)
        if isinstance(s, int):
            return self._smul(Scalar(s))
        return NotImplemented

    def __eq__(self, o: object) -> bool:
        if not isinstance(o, Point):
            return False
        if self._inf or o._inf:
            return self._inf and o._inf
        return self._pk.format() == o._pk.format()  # type: ignore[union-attr]

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        if self._inf:
            return "Point(identity)"
        return f"Point({self.to_bytes().hex()[:16]}…)"

    @staticmethod
    def sum(points: Iterable[Point]) -> Point:
        """Add many points with one libsecp256k1 call."""
        real = [p._pk for p in points if not p._inf]
        if not real:
            return Point.identity()
        if len(real) == 1:
            return Point(pk=real[0])
        try:
            return Point(pk=_PK.combine_keys(real))
        except ValueError:
            # combine_keys rejects a sum that lands on the identity
            return Point.identity()


def multi_mul(scalars: Sequence[Scalar], points: Sequence[Point]) -> Point:
    """Linear combination  sum(s_i * P_i)."""
    if len(scalars) != len(points):
        raise ValueError("scalars and points must have equal length")
    terms: List[Point] = [s * p for s, p in zip(scalars, points)]
    return Point.sum(terms)


# ── module-level generators ─────────────────────────────────────────────
G = Point.generator()
H = Point.nums_generator(b"confidential-balance/NUMS/H/secp256k1/v1")
