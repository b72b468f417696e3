"""
Domain-separated Fiat-Shamir hashing.

Each proof kind hashes under its own tag so that a transcript produced for
one statement can never be replayed as a challenge for another:

    H_tag(x) = SHA-256( SHA-256(tag) || SHA-256(tag) || x )

(BIP-340 tagged-hash construction.)
"""

from __future__ import annotations

import hashlib
from typing import Any

from .curve import Scalar, Point, SCALAR_BYTES

# ── domain tags ─────────────────────────────────────────────────────────
TAG_WITHDRAW = b"confidential-balance/v1/withdraw"
TAG_TRANSFER = b"confidential-balance/v1/transfer"
TAG_NORMALIZE = b"confidential-balance/v1/normalize"
TAG_ROTATE = b"confidential-balance/v1/rotate-key"
TAG_RANGE_BIT = b"confidential-balance/v1/range-bit"
TAG_KEY_DERIVE = b"confidential-balance/v1/key-derivation"


def _tagged_hasher(tag: bytes) -> "hashlib._Hash":
    tag_hash = hashlib.sha256(tag).digest()
    h = hashlib.sha256()
    h.update(tag_hash)
    h.update(tag_hash)
    return h


def _encode_item(item: Any) -> bytes:
    """
    Canonical encoding of a transcript element.

    Variable-length items are length-prefixed so concatenations stay
    unambiguous.
    """
    if isinstance(item, (bytes, bytearray)):
        return len(item).to_bytes(4, "big") + bytes(item)
    if isinstance(item, bool):
        return b"\x01" if item else b"\x00"
    if isinstance(item, int):
        return item.to_bytes(SCALAR_BYTES, "big")
    if isinstance(item, Scalar):
        return item.to_bytes()
    if isinstance(item, Point):
        return item.to_bytes()
    if isinstance(item, (list, tuple)):
        parts = b"".join(_encode_item(x) for x in item)
        return len(item).to_bytes(4, "big") + parts
    if isinstance(item, str):
        return _encode_item(item.encode("utf-8"))
    raise TypeError(f"cannot encode {type(item).__name__} into a transcript")


def tagged_hash(tag: bytes, *args: Any) -> bytes:
    h = _tagged_hasher(tag)
    for a in args:
        h.update(_encode_item(a))
    return h.digest()


def challenge(tag: bytes, *args: Any) -> Scalar:
    """Hash to scalar: H_tag(*args) mod q."""
    return Scalar.from_bytes_reduce(tagged_hash(tag, *args))
