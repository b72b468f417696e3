"""
Ledger access.

``LedgerClient`` is the narrow, async surface the confidential balance layer
needs from a node: view calls, the sender's sequence number, submission and
a bounded wait for commitment.  ``RestLedgerClient`` implements it over a
node's JSON REST API with ``aiohttp``; ``devnet.LocalLedger`` implements it
in memory.

Nothing here retries.  A failed or timed-out call is reported to the caller,
who decides whether the store must be re-probed first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from .errors import CommitTimeout, LedgerError
from .payload import Transaction, TransactionResult, ViewRequest

logger = logging.getLogger("confidential_balance.ledger")

Signer = Callable[[Transaction], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]


class LedgerClient(ABC):
    """Async ledger interface used by readers and orchestrators."""

    @abstractmethod
    async def view(self, request: ViewRequest) -> List[Any]:
        """Run a read-only module function; returns its JSON result list."""

    @abstractmethod
    async def get_sequence_number(self, address: str) -> int:
        ...

    @abstractmethod
    async def submit(self, txn: Transaction) -> str:
        """Submit for execution; returns the transaction hash."""

    @abstractmethod
    async def wait_for_transaction(
        self, txn_hash: str, timeout: Optional[float] = None
    ) -> TransactionResult:
        """
        Block until ``txn_hash`` commits.

        Raises ``CommitTimeout`` when it does not commit within ``timeout``
        seconds; the transaction may still commit afterwards.
        """

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


class RestLedgerClient(LedgerClient):
    """
    ``LedgerClient`` over a node REST API.

    Parameters
    ----------
    node_url : str
        Base URL, e.g. ``http://127.0.0.1:8080``.  Paths below it:
        ``/v1/view``, ``/v1/accounts/{addr}``, ``/v1/transactions`` and
        ``/v1/transactions/by_hash/{hash}``.
    signer : callable, optional
        Turns an unsigned ``Transaction`` into the JSON body the node
        accepts (sync or async).  Without one the unsigned JSON is posted,
        which only a local or simulation node will take.
    request_timeout : float
        Per-request timeout in seconds.
    poll_interval : float
        Delay between commitment polls.
    default_commit_timeout : float
        Used by ``wait_for_transaction`` when no timeout is given.
    """

    def __init__(
        self,
        node_url: str,
        signer: Optional[Signer] = None,
        request_timeout: float = 10.0,
        poll_interval: float = 0.5,
        default_commit_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.node_url = node_url.rstrip("/")
        self.signer = signer
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.default_commit_timeout = default_commit_timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        url = f"{self.node_url}{path}"
        try:
            async with self._get_session().request(method, url, json=body) as resp:
                if resp.status == 404 and allow_404:
                    return None
                text = await resp.text()
                if resp.status >= 400:
                    raise LedgerError(
                        f"{method} {path} returned {resp.status}: {text[:200]}",
                        status=resp.status,
                    )
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise LedgerError(f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise LedgerError(f"{method} {path} failed: {exc}") from exc

    async def view(self, request: ViewRequest) -> List[Any]:
        result = await self._request("POST", "/v1/view", request.to_json())
        if not isinstance(result, list):
            raise LedgerError(f"view {request.function_id} returned non-list")
        return result

    async def get_sequence_number(self, address: str) -> int:
        data = await self._request("GET", f"/v1/accounts/{address}")
        try:
            return int(data["sequence_number"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerError(f"malformed account resource for {address}") from exc

    async def submit(self, txn: Transaction) -> str:
        if self.signer is not None:
            body = self.signer(txn)
            if asyncio.iscoroutine(body):
                body = await body
        else:
            body = txn.to_json()
        data = await self._request("POST", "/v1/transactions", body)
        txn_hash = data.get("hash") if isinstance(data, dict) else None
        if not txn_hash:
            raise LedgerError(f"submit response missing hash for {txn!r}")
        logger.info("submitted %r -> %s", txn, txn_hash)
        return txn_hash

    async def wait_for_transaction(
        self, txn_hash: str, timeout: Optional[float] = None
    ) -> TransactionResult:
        timeout = self.default_commit_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        path = f"/v1/transactions/by_hash/{txn_hash}"
        while True:
            data = await self._request("GET", path, allow_404=True)
            if data is not None and data.get("type") != "pending_transaction":
                result = TransactionResult.from_json(data)
                logger.info("committed %s success=%s", result.hash, result.success)
                return result
            if time.monotonic() >= deadline:
                raise CommitTimeout(txn_hash, timeout)
            await asyncio.sleep(self.poll_interval)
