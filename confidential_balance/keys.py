"""
Encryption key pairs for confidential stores.

These are separate from the account's transaction-signing key.  A
decryption key is a scalar ``s``; its encryption key is  P = s^-1 * H,
so that for a ciphertext  (C, D) = (m*G + r*H, r*P)  the holder of ``s``
recovers  m*G = C - s*D.
"""

from __future__ import annotations

import hmac
import hashlib
from dataclasses import dataclass
from typing import Union

from .curve import Scalar, Point, H, ORDER, POINT_BYTES, SCALAR_BYTES
from .errors import InvalidEncoding, InvalidKeyLength, InvalidKeyMaterial
from .transcript import TAG_KEY_DERIVE, tagged_hash

DECRYPTION_KEY_LENGTH = SCALAR_BYTES
ENCRYPTION_KEY_LENGTH = POINT_BYTES


def _hex_to_bytes(value: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidEncoding("key is not valid hex") from exc


@dataclass(frozen=True)
class EncryptionKey:
    """Public half of a store's key pair (33-byte compressed point)."""

    point: Point

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> EncryptionKey:
        if isinstance(data, str):
            data = _hex_to_bytes(data)
        if len(data) != ENCRYPTION_KEY_LENGTH:
            raise InvalidKeyLength("encryption key", ENCRYPTION_KEY_LENGTH, len(data))
        try:
            point = Point.from_bytes(data)
        except InvalidEncoding as exc:
            raise InvalidKeyMaterial("encryption key is not a curve point") from exc
        if point.is_identity():
            raise InvalidKeyMaterial("encryption key cannot be the identity")
        return cls(point=point)

    @classmethod
    def coerce(cls, value: Union["EncryptionKey", bytes, str]) -> EncryptionKey:
        if isinstance(value, EncryptionKey):
            return value
        return cls.from_bytes(value)

    def to_bytes(self) -> bytes:
        return self.point.to_bytes()

    def hex(self) -> str:
        return "0x" + self.to_bytes().hex()

    def __repr__(self) -> str:
        return f"EncryptionKey({self.hex()})"


class DecryptionKey:
    """
    Secret half of a store's key pair (32-byte scalar).

    Never persisted by this package and never rendered by ``repr`` or
    ``str``; pass it down the call stack of the operation that needs it
    and let it go.
    """

    __slots__ = ("_s", "_public")

    def __init__(self, scalar: Scalar) -> None:
        if scalar.is_zero():
            raise InvalidKeyMaterial("decryption key cannot be zero")
        self._s = scalar
        self._public = EncryptionKey(point=scalar.inv() * H)

    @classmethod
    def generate(cls) -> DecryptionKey:
        return cls(Scalar.random())

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> DecryptionKey:
        if isinstance(data, str):
            data = _hex_to_bytes(data)
        if len(data) != DECRYPTION_KEY_LENGTH:
            raise InvalidKeyLength("decryption key", DECRYPTION_KEY_LENGTH, len(data))
        value = int.from_bytes(data, "big")
        if value == 0 or value >= ORDER:
            raise InvalidKeyMaterial("decryption key out of range")
        return cls(Scalar(value))

    @classmethod
    def coerce(cls, value: Union["DecryptionKey", bytes, str]) -> DecryptionKey:
        if isinstance(value, DecryptionKey):
            return value
        return cls.from_bytes(value)

    @classmethod
    def derive(cls, seed: bytes, index: int = 0) -> DecryptionKey:
        """
        Deterministic key from a wallet seed and an index.

        HMAC-SHA512 keyed by a tagged hash of the seed; the first 32 bytes
        that reduce to a non-zero scalar are used (counter-bumped on the
        negligible chance they do not).
        """
        if len(seed) < 16:
            raise InvalidKeyMaterial("seed must be at least 16 bytes")
        mac_key = tagged_hash(TAG_KEY_DERIVE, seed)
        counter = 0
        while True:
            msg = index.to_bytes(4, "big") + counter.to_bytes(4, "big")
            digest = hmac.new(mac_key, msg, hashlib.sha512).digest()
            value = int.from_bytes(digest[:32], "big")
            if 0 < value < ORDER:
                return cls(Scalar(value))
            counter += 1

    @property
    def scalar(self) -> Scalar:
        return self._s

    def encryption_key(self) -> EncryptionKey:
        return self._public

    def to_bytes(self) -> bytes:
        return self._s.to_bytes()

    def __eq__(self, o: object) -> bool:
        return isinstance(o, DecryptionKey) and hmac.compare_digest(
            self.to_bytes(), o.to_bytes()
        )

    def __hash__(self) -> int:
        return hash(self._public.to_bytes())

    def __repr__(self) -> str:
        return f"DecryptionKey(<redacted>, public={self._public.hex()})"

    __str__ = __repr__
