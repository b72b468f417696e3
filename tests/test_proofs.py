"""
Tests for the proof primitives: confidential_balance.sigma and
confidential_balance.range_proof.
"""

import pytest

from confidential_balance.curve import G, H, Scalar
from confidential_balance.errors import InvalidEncoding, ProofConstructionError
from confidential_balance.range_proof import BIT_PROOF_BYTES, prove_range, verify_range
from confidential_balance.sigma import LinearStatement, SigmaProof
from confidential_balance.transcript import TAG_NORMALIZE, TAG_WITHDRAW, challenge, tagged_hash

TAG = TAG_WITHDRAW


def _dleq(x: Scalar) -> LinearStatement:
    """X = x*G and Y = x*H over one witness."""
    st = LinearStatement(num_witnesses=1)
    st.add(x * G, (0, G))
    st.add(x * H, (0, H))
    return st


class TestTranscript:

    def test_tags_separate_domains(self):
        assert tagged_hash(TAG_WITHDRAW, b"x") != tagged_hash(TAG_NORMALIZE, b"x")

    def test_length_prefix_prevents_ambiguity(self):
        assert tagged_hash(TAG, b"ab", b"c") != tagged_hash(TAG, b"a", b"bc")

    def test_challenge_is_scalar(self):
        assert isinstance(challenge(TAG, G, 5), Scalar)

    def test_unsupported_item(self):
        with pytest.raises(TypeError):
            tagged_hash(TAG, object())


class TestSigmaProof:

    def test_prove_verify(self):
        x = Scalar.random()
        st = _dleq(x)
        proof = SigmaProof.prove(st, [x], TAG, b"ctx")
        assert proof.verify(st, TAG, b"ctx")

    def test_context_bound(self):
        x = Scalar.random()
        st = _dleq(x)
        proof = SigmaProof.prove(st, [x], TAG, b"ctx")
        assert not proof.verify(st, TAG, b"other")
        assert not proof.verify(st, TAG_NORMALIZE, b"ctx")

    def test_wrong_witness_refused(self):
        x = Scalar.random()
        with pytest.raises(ProofConstructionError):
            SigmaProof.prove(_dleq(x), [x + Scalar.one()], TAG)

    def test_witness_length_checked(self):
        x = Scalar.random()
        with pytest.raises(ValueError):
            SigmaProof.prove(_dleq(x), [x, x], TAG)

    def test_statement_index_checked(self):
        st = LinearStatement(num_witnesses=1)
        with pytest.raises(ValueError):
            st.add(G, (1, G))

    def test_bytes_roundtrip(self):
        x = Scalar.random()
        st = _dleq(x)
        proof = SigmaProof.prove(st, [x], TAG)
        data = proof.to_bytes()
        assert len(data) == 2 * 33 + 32
        again = SigmaProof.from_bytes(data, num_relations=2, num_witnesses=1)
        assert again.verify(st, TAG)

    def test_truncated_bytes(self):
        with pytest.raises(InvalidEncoding):
            SigmaProof.from_bytes(b"\x00" * 97, num_relations=2, num_witnesses=1)

    def test_tampered_response(self):
        x = Scalar.random()
        st = _dleq(x)
        proof = SigmaProof.prove(st, [x], TAG)
        forged = SigmaProof(
            commitments=proof.commitments,
            responses=(proof.responses[0] + Scalar.one(),),
        )
        assert not forged.verify(st, TAG)


class TestRangeProof:

    def test_valid_values(self):
        values = [0, 1, 65535, 1234]
        blindings = [Scalar.random() for _ in values]
        proof = prove_range(values, blindings, 16, b"ctx")
        assert len(proof) == len(values) * 16 * BIT_PROOF_BYTES
        commitments = [Scalar(v) * G + r * H for v, r in zip(values, blindings)]
        assert verify_range(commitments, proof, 16, b"ctx")

    def test_out_of_range_refused(self):
        with pytest.raises(ProofConstructionError):
            prove_range([1 << 16], [Scalar.random()], 16)

    def test_wrong_commitment_rejected(self):
        r = Scalar.random()
        proof = prove_range([7], [r], 16)
        assert not verify_range([Scalar(8) * G + r * H], proof, 16)

    def test_context_bound(self):
        r = Scalar.random()
        proof = prove_range([7], [r], 16, b"a")
        assert not verify_range([Scalar(7) * G + r * H], proof, 16, b"b")

    def test_length_checked(self):
        r = Scalar.random()
        proof = prove_range([7], [r], 16)
        assert not verify_range([Scalar(7) * G + r * H], proof[:-1], 16)

    def test_position_bound(self):
        # swapping two values' proofs breaks the per-position context
        r0, r1 = Scalar.random(), Scalar.random()
        proof = prove_range([3, 4], [r0, r1], 8)
        half = len(proof) // 2
        swapped = proof[half:] + proof[:half]
        commitments = [Scalar(4) * G + r1 * H, Scalar(3) * G + r0 * H]
        assert not verify_range(commitments, swapped, 8)
