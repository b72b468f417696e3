"""
Sigma proofs for systems of linear relations over secp256k1.

Every balance operation proves a handful of statements of the form

    Y_j = sum_k  x_k * B_jk

over one shared witness vector ``x`` (decryption key, new chunk values,
new randomness).  Schnorr and DLEQ proofs are the one- and two-relation
special cases; here the same three-move protocol is run over an arbitrary
relation system and made non-interactive via Fiat-Shamir:

    prover:    t_k <-$ Z_q,   A_j = sum_k t_k * B_jk
    challenge: c = H_tag(context, Y_1..Y_m, A_1..A_m)
    response:  z_k = t_k + c * x_k
    verifier:  sum_k z_k * B_jk  ==  A_j + c * Y_j   for every j

References
----------
- Schnorr (1989). "Efficient Identification and Signatures for Smart Cards."
- Maurer (2009). "Unifying Zero-Knowledge Proofs of Knowledge."
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .curve import Scalar, Point, POINT_BYTES, SCALAR_BYTES
from .errors import InvalidEncoding, ProofConstructionError
from .transcript import challenge


@dataclass(frozen=True)
class Relation:
    """One linear relation  image = sum(x[index] * base)."""

    image: Point
    terms: Tuple[Tuple[int, Point], ...]

    def evaluate(self, values: Sequence[Scalar]) -> Point:
        return Point.sum(values[i] * base for i, base in self.terms)


@dataclass
class LinearStatement:
    """A system of relations over a witness vector of fixed length."""

    num_witnesses: int
    relations: List[Relation] = field(default_factory=list)

    def add(self, image: Point, *terms: Tuple[int, Point]) -> None:
        for index, _ in terms:
            if not 0 <= index < self.num_witnesses:
                raise ValueError(f"witness index {index} out of range")
        self.relations.append(Relation(image=image, terms=tuple(terms)))

    def unsatisfied(self, witness: Sequence[Scalar]) -> List[int]:
        """Indices of relations the witness does not satisfy."""
        return [
            j for j, rel in enumerate(self.relations)
            if rel.evaluate(witness) != rel.image
        ]


@dataclass(frozen=True)
class SigmaProof:
    """
    Non-interactive proof for a ``LinearStatement``.

    Serialised as the commitments ``A_j`` (33 bytes each) followed by the
    responses ``z_k`` (32 bytes each); both counts are fixed by the
    statement shape, so no length prefixes are needed.
    """

    commitments: Tuple[Point, ...]
    responses: Tuple[Scalar, ...]

    @staticmethod
    def prove(
        statement: LinearStatement,
        witness: Sequence[Scalar],
        tag: bytes,
        context: bytes = b"",
    ) -> SigmaProof:
        """
        Prove knowledge of ``witness`` satisfying every relation.

        Raises ``ProofConstructionError`` when the witness does not
        satisfy the statement, instead of emitting a proof that the
        verifier would reject.
        """
        if len(witness) != statement.num_witnesses:
            raise ValueError(
                f"witness has {len(witness)} entries, "
                f"statement expects {statement.num_witnesses}"
            )
        bad = statement.unsatisfied(witness)
        if bad:
            raise ProofConstructionError(
                f"witness does not satisfy relation(s) {bad}"
            )

        nonces = [Scalar.random() for _ in range(statement.num_witnesses)]
        commitments = tuple(rel.evaluate(nonces) for rel in statement.relations)
        c = _challenge(statement, commitments, tag, context)
        responses = tuple(t + c * x for t, x in zip(nonces, witness))
        return SigmaProof(commitments=commitments, responses=responses)

    def verify(
        self,
        statement: LinearStatement,
        tag: bytes,
        context: bytes = b"",
    ) -> bool:
        if len(self.commitments) != len(statement.relations):
            return False
        if len(self.responses) != statement.num_witnesses:
            return False
        c = _challenge(statement, self.commitments, tag, context)
        for rel, commitment in zip(statement.relations, self.commitments):
            if rel.evaluate(self.responses) != commitment + (c * rel.image):
                return False
        return True

    def to_bytes(self) -> bytes:
        return (
            b"".join(a.to_bytes() for a in self.commitments)
            + b"".join(z.to_bytes() for z in self.responses)
        )

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        num_relations: int,
        num_witnesses: int,
    ) -> SigmaProof:
        expected = num_relations * POINT_BYTES + num_witnesses * SCALAR_BYTES
        if len(data) != expected:
            raise InvalidEncoding(
                f"sigma proof must be {expected} bytes, got {len(data)}"
            )
        commitments = tuple(
            Point.from_bytes(data[i * POINT_BYTES:(i + 1) * POINT_BYTES])
            for i in range(num_relations)
        )
        offset = num_relations * POINT_BYTES
        responses = tuple(
            Scalar.from_bytes(
                data[offset + k * SCALAR_BYTES:offset + (k + 1) * SCALAR_BYTES]
            )
            for k in range(num_witnesses)
        )
        return cls(commitments=commitments, responses=responses)


def _challenge(
    statement: LinearStatement,
    commitments: Sequence[Point],
    tag: bytes,
    context: bytes,
) -> Scalar:
    images = [rel.image for rel in statement.relations]
    return challenge(tag, context, images, list(commitments))
