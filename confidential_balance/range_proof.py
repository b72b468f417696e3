"""
Batched bit-decomposition range proofs over Pedersen commitments.

For a commitment  V = v*G + r*H  the prover shows  0 <= v < 2^n  by
committing to every bit,  B_k = b_k*G + t_k*H,  with the blindings chosen
so that  sum 2^k * t_k = r.  The verifier checks

1. ``sum 2^k * B_k == V``  (the bits recompose the committed value), and
2. for every k an OR proof that ``B_k`` opens to 0 or to 1, i.e. that one
   of  B_k  or  B_k - G  is a multiple of ``H`` (Cramer-Damgård-
   Schoenmakers composition of two Schnorr proofs over base ``H``).

Per bit the proof carries  B_k || e0 || e1 || z0 || z1  (33 + 4*32 bytes).
A batch is the concatenation over values, in order, so a proof for the
eight chunks of a balance is one flat byte string.

References
----------
- Cramer, Damgård, Schoenmakers (1994). "Proofs of Partial Knowledge and
  Simplified Design of Witness Hiding Protocols."
"""

from __future__ import annotations

from typing import List, Sequence

from .curve import Scalar, Point, G, H, POINT_BYTES, SCALAR_BYTES
from .errors import InvalidEncoding, ProofConstructionError
from .transcript import TAG_RANGE_BIT, challenge

BIT_PROOF_BYTES = POINT_BYTES + 4 * SCALAR_BYTES


def _split_blinding(r: Scalar, bits: int) -> List[Scalar]:
    """Random bit blindings with  sum 2^k * t_k = r."""
    blindings = [Scalar.random() for _ in range(bits - 1)]
    remaining = r
    for k, t in enumerate(blindings):
        remaining = remaining - Scalar(1 << k) * t
    blindings.append(remaining * Scalar(1 << (bits - 1)).inv())
    return blindings


def _prove_bit(bit: int, t: Scalar, commitment: Point, context: bytes) -> bytes:
    # Y0 = B, Y1 = B - G; the prover knows the H-log of Y_bit only
    images = (commitment, commitment - G)
    fake = 1 - bit
    e_fake = Scalar.random()
    z_fake = Scalar.random()
    nonce = Scalar.random()

    announcements = [Point.identity(), Point.identity()]
    announcements[bit] = nonce * H
    announcements[fake] = (z_fake * H) - (e_fake * images[fake])

    c = challenge(TAG_RANGE_BIT, context, commitment, announcements[0], announcements[1])
    e_real = c - e_fake
    z_real = nonce + e_real * t

    e = [Scalar.zero(), Scalar.zero()]
    z = [Scalar.zero(), Scalar.zero()]
    e[bit], e[fake] = e_real, e_fake
    z[bit], z[fake] = z_real, z_fake
    return (
        commitment.to_bytes()
        + e[0].to_bytes() + e[1].to_bytes()
        + z[0].to_bytes() + z[1].to_bytes()
    )


def _verify_bit(chunk: bytes, context: bytes) -> Point:
    """Check one bit proof; return its bit commitment (raises on reject)."""
    commitment = Point.from_bytes(chunk[:POINT_BYTES])
    scalars = [
        Scalar.from_bytes(chunk[POINT_BYTES + i * SCALAR_BYTES:POINT_BYTES + (i + 1) * SCALAR_BYTES])
        for i in range(4)
    ]
    e0, e1, z0, z1 = scalars
    a0 = (z0 * H) - (e0 * commitment)
    a1 = (z1 * H) - (e1 * (commitment - G))
    if challenge(TAG_RANGE_BIT, context, commitment, a0, a1) != e0 + e1:
        raise InvalidEncoding("bit proof rejected")
    return commitment


def prove_range(
    values: Sequence[int],
    blindings: Sequence[Scalar],
    bits: int,
    context: bytes = b"",
) -> bytes:
    """
    Prove every ``values[i]`` committed as ``values[i]*G + blindings[i]*H``
    lies in [0, 2^bits).
    """
    if len(values) != len(blindings):
        raise ValueError("values and blindings must have equal length")
    out: List[bytes] = []
    for index, (v, r) in enumerate(zip(values, blindings)):
        if not 0 <= v < (1 << bits):
            raise ProofConstructionError(
                f"value at position {index} does not fit in {bits} bits"
            )
        bit_context = context + index.to_bytes(4, "big")
        for k, t in enumerate(_split_blinding(r, bits)):
            b = (v >> k) & 1
            commitment = (Scalar(b) * G) + (t * H)
            out.append(_prove_bit(b, t, commitment, bit_context + k.to_bytes(2, "big")))
    return b"".join(out)


def verify_range(
    commitments: Sequence[Point],
    proof: bytes,
    bits: int,
    context: bytes = b"",
) -> bool:
    """Accept iff ``proof`` shows each commitment opens into [0, 2^bits)."""
    per_value = bits * BIT_PROOF_BYTES
    if len(proof) != per_value * len(commitments):
        return False
    for index, target in enumerate(commitments):
        bit_context = context + index.to_bytes(4, "big")
        recomposed: List[Point] = []
        block = proof[index * per_value:(index + 1) * per_value]
        try:
            for k in range(bits):
                chunk = block[k * BIT_PROOF_BYTES:(k + 1) * BIT_PROOF_BYTES]
                bit_commitment = _verify_bit(chunk, bit_context + k.to_bytes(2, "big"))
                recomposed.append(Scalar(1 << k) * bit_commitment)
        except InvalidEncoding:
            return False
        if Point.sum(recomposed) != target:
            return False
    return True
