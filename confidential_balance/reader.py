"""
Read side of a confidential store.

Every method is a fresh ledger read; nothing is cached between calls, since
another party (or another process of the same owner) may mutate the store
at any time.  Methods that need several views issue them concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .chunked import (
    BALANCE_CHUNKS,
    ConfidentialBalance,
    decrypt_balance_lenient,
)
from .config import NetworkConfig
from .curve import POINT_BYTES
from .errors import InvalidEncoding, LedgerError
from .keys import DecryptionKey, EncryptionKey
from .ledger import LedgerClient
from .payload import ViewRequest

logger = logging.getLogger("confidential_balance.reader")

# view function names of the on-chain module
VIEW_PENDING = "pending_balance"
VIEW_ACTUAL = "actual_balance"
VIEW_FROZEN = "is_frozen"
VIEW_NORMALIZED = "is_normalized"
VIEW_HAS_STORE = "has_confidential_asset_store"
VIEW_ENCRYPTION_KEY = "encryption_key"
VIEW_AUDITOR = "get_auditor"
VIEW_GLOBAL_AUDITOR = "get_global_auditor"


@dataclass(frozen=True)
class StoreFlags:
    frozen: bool
    normalized: bool


@dataclass(frozen=True)
class ConfidentialStore:
    """Snapshot of one (account, token) store as the ledger reported it."""

    account: str
    token: str
    encryption_key: EncryptionKey
    pending_balance: ConfidentialBalance
    actual_balance: ConfidentialBalance
    normalized: bool
    frozen: bool
    auditor_keys: Tuple[EncryptionKey, ...]


@dataclass(frozen=True)
class DecryptedBalance:
    pending: int
    actual: int
    pending_ciphertext: ConfidentialBalance
    actual_ciphertext: ConfidentialBalance

    @property
    def total(self) -> int:
        return self.pending + self.actual


def _hex_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise InvalidEncoding(f"expected hex string, got {type(value).__name__}")
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidEncoding("malformed hex in view result") from exc


def parse_balance(raw: Any) -> ConfidentialBalance:
    """
    Parse a balance view result.

    Accepted forms: ``{"chunks": [{"left": {"data": hex}, "right": {"data":
    hex}}, ...]}`` as the node renders the Move struct, or one hex string
    holding the wire concatenation.
    """
    if isinstance(raw, str):
        return ConfidentialBalance.from_bytes(_hex_bytes(raw), BALANCE_CHUNKS)
    parts: List[bytes] = []
    try:
        for c in raw["chunks"]:
            for side in ("left", "right"):
                component = _hex_bytes(c[side]["data"])
                if len(component) != POINT_BYTES:
                    raise InvalidEncoding("balance chunk component has wrong length")
                parts.append(component)
    except (KeyError, TypeError) as exc:
        raise InvalidEncoding("malformed balance view result") from exc
    data = b"".join(parts)
    return ConfidentialBalance.from_bytes(data, BALANCE_CHUNKS)


def parse_optional_key(raw: Any) -> Optional[EncryptionKey]:
    """Parse a Move ``Option<vector<u8>>`` rendered as ``{"vec": [...]}``."""
    if isinstance(raw, dict):
        raw = raw.get("vec", [])
    if isinstance(raw, list):
        if not raw:
            return None
        raw = raw[0]
    data = _hex_bytes(raw)
    if not data:
        return None
    return EncryptionKey.from_bytes(data)


class BalanceStoreReader:
    """
    Query a confidential store on one network.

    Parameters
    ----------
    client : LedgerClient
        Transport for view calls.
    network : NetworkConfig
        Module address and name the views are addressed to.
    """

    def __init__(self, client: LedgerClient, network: NetworkConfig) -> None:
        self.client = client
        self.network = network

    def _request(self, name: str, *args: Any) -> ViewRequest:
        return ViewRequest(
            module_address=self.network.module_address,
            module_name=self.network.module_name,
            name=name,
            arguments=tuple(args),
        )

    async def _view_first(self, name: str, *args: Any) -> Any:
        result = await self.client.view(self._request(name, *args))
        if not result:
            raise LedgerError(f"view {name} returned an empty result")
        return result[0]

    # single views ------------------------------------------------------------
    async def pending_balance(self, account: str, token: str) -> ConfidentialBalance:
        return parse_balance(await self._view_first(VIEW_PENDING, account, token))

    async def actual_balance(self, account: str, token: str) -> ConfidentialBalance:
        return parse_balance(await self._view_first(VIEW_ACTUAL, account, token))

    async def is_frozen(self, account: str, token: str) -> bool:
        return bool(await self._view_first(VIEW_FROZEN, account, token))

    async def is_normalized(self, account: str, token: str) -> bool:
        return bool(await self._view_first(VIEW_NORMALIZED, account, token))

    async def has_store(self, account: str, token: str) -> bool:
        return bool(await self._view_first(VIEW_HAS_STORE, account, token))

    async def encryption_key(self, account: str, token: str) -> EncryptionKey:
        raw = await self._view_first(VIEW_ENCRYPTION_KEY, account, token)
        if isinstance(raw, dict):
            raw = raw.get("data", raw.get("point", {}).get("data"))
        return EncryptionKey.from_bytes(_hex_bytes(raw))

    async def token_auditor(self, token: str) -> Optional[EncryptionKey]:
        return parse_optional_key(await self._view_first(VIEW_AUDITOR, token))

    async def global_auditor(self) -> Optional[EncryptionKey]:
        return parse_optional_key(await self._view_first(VIEW_GLOBAL_AUDITOR))

    # composite views ---------------------------------------------------------
    async def ledger_auditors(self, token: str) -> List[EncryptionKey]:
        """Global auditor first, then the token's auditor; absent ones skipped."""
        global_key, token_key = await asyncio.gather(
            self.global_auditor(), self.token_auditor(token)
        )
        return [k for k in (global_key, token_key) if k is not None]

    async def flags(self, account: str, token: str) -> StoreFlags:
        frozen, normalized = await asyncio.gather(
            self.is_frozen(account, token), self.is_normalized(account, token)
        )
        return StoreFlags(frozen=frozen, normalized=normalized)

    async def get_store(self, account: str, token: str) -> ConfidentialStore:
        key, pending, actual, frozen, normalized, auditors = await asyncio.gather(
            self.encryption_key(account, token),
            self.pending_balance(account, token),
            self.actual_balance(account, token),
            self.is_frozen(account, token),
            self.is_normalized(account, token),
            self.ledger_auditors(token),
        )
        return ConfidentialStore(
            account=account,
            token=token,
            encryption_key=key,
            pending_balance=pending,
            actual_balance=actual,
            normalized=normalized,
            frozen=frozen,
            auditor_keys=tuple(auditors),
        )

    async def get_balance(
        self,
        account: str,
        token: str,
        decryption_key: DecryptionKey,
    ) -> DecryptedBalance:
        """Fetch and decrypt both balances (discrete logs run off-loop)."""
        pending, actual = await asyncio.gather(
            self.pending_balance(account, token),
            self.actual_balance(account, token),
        )
        loop = asyncio.get_running_loop()
        pending_value, actual_value = await asyncio.gather(
            loop.run_in_executor(None, decrypt_balance_lenient, pending, decryption_key),
            loop.run_in_executor(None, decrypt_balance_lenient, actual, decryption_key),
        )
        logger.debug("decrypted balances for %s/%s", account, token)
        return DecryptedBalance(
            pending=pending_value,
            actual=actual_value,
            pending_ciphertext=pending,
            actual_ciphertext=actual,
        )
