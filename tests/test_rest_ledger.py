"""
Tests for confidential_balance.ledger.RestLedgerClient against a small
aiohttp node stub.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from confidential_balance.chunked import ConfidentialBalance
from confidential_balance.config import NetworkConfig
from confidential_balance.errors import CommitTimeout, LedgerError
from confidential_balance.keys import DecryptionKey
from confidential_balance.ledger import RestLedgerClient
from confidential_balance.payload import EntryFunction, Transaction, ViewRequest
from confidential_balance.reader import BalanceStoreReader

ALICE = "0xa11ce"
TOKEN = "0x10c0"
NETWORK = NetworkConfig.for_network("local")


class FakeNode:
    """Just enough of the node REST API for the client."""

    def __init__(self):
        self.posted = []
        self.polls = {}
        self.pending_polls = 1
        self.views = {}
        self.fail_views = False
        self.omit_hash = False

    def app(self):
        app = web.Application()
        app.router.add_post("/v1/view", self.view)
        app.router.add_get("/v1/accounts/{addr}", self.account)
        app.router.add_post("/v1/transactions", self.submit)
        app.router.add_get("/v1/transactions/by_hash/{hash}", self.by_hash)
        return app

    async def view(self, request):
        if self.fail_views:
            return web.json_response({"message": "boom"}, status=500)
        body = await request.json()
        name = body["function"].rsplit("::", 1)[-1]
        return web.json_response(self.views.get(name, {"not": "a list"}))

    async def account(self, request):
        addr = request.match_info["addr"]
        if addr == "0xbroken":
            return web.json_response({})
        return web.json_response({"sequence_number": "5"})

    async def submit(self, request):
        body = await request.json()
        self.posted.append(body)
        if self.omit_hash:
            return web.json_response({"sender": body["sender"]}, status=202)
        return web.json_response({"hash": "0xfeed"}, status=202)

    async def by_hash(self, request):
        h = request.match_info["hash"]
        if h == "0xmissing":
            return web.json_response({"message": "not found"}, status=404)
        seen = self.polls.get(h, 0)
        self.polls[h] = seen + 1
        if seen < self.pending_polls:
            return web.json_response({"type": "pending_transaction", "hash": h})
        return web.json_response({
            "type": "user_transaction", "hash": h, "success": True,
            "vm_status": "Executed successfully", "version": "77",
        })


@pytest_asyncio.fixture
async def node():
    fake = FakeNode()
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/"))
    yield fake
    await server.close()


def _payload():
    return EntryFunction(NETWORK.module_address, NETWORK.module_name, "register",
                         (TOKEN, b"\x02" * 33))


@pytest.mark.asyncio
class TestRestLedgerClient:

    async def test_sequence_number(self, node):
        async with RestLedgerClient(node.url) as client:
            assert await client.get_sequence_number(ALICE) == 5
            with pytest.raises(LedgerError):
                await client.get_sequence_number("0xbroken")

    async def test_submit_unsigned(self, node):
        async with RestLedgerClient(node.url) as client:
            txn = Transaction(ALICE, 5, _payload())
            assert await client.submit(txn) == "0xfeed"
        posted = node.posted[0]
        assert posted["sender"] == ALICE
        assert posted["payload"]["arguments"][1] == "0x" + "02" * 33

    async def test_submit_with_async_signer(self, node):
        async def signer(txn):
            body = txn.to_json()
            body["signature"] = {"type": "stub"}
            return body

        async with RestLedgerClient(node.url, signer=signer) as client:
            await client.submit(Transaction(ALICE, 5, _payload()))
        assert node.posted[0]["signature"] == {"type": "stub"}

    async def test_submit_without_hash_fails(self, node):
        node.omit_hash = True
        async with RestLedgerClient(node.url) as client:
            with pytest.raises(LedgerError, match="missing hash"):
                await client.submit(Transaction(ALICE, 5, _payload()))
        assert len(node.posted) == 1

    async def test_wait_polls_until_committed(self, node):
        node.pending_polls = 2
        async with RestLedgerClient(node.url, poll_interval=0.01) as client:
            result = await client.wait_for_transaction("0xabc", timeout=5)
        assert result.success and result.version == 77
        assert node.polls["0xabc"] == 3

    async def test_wait_times_out(self, node):
        async with RestLedgerClient(node.url, poll_interval=0.01) as client:
            with pytest.raises(CommitTimeout):
                await client.wait_for_transaction("0xmissing", timeout=0.05)

    async def test_http_error(self, node):
        node.fail_views = True
        async with RestLedgerClient(node.url) as client:
            with pytest.raises(LedgerError) as info:
                await client.view(ViewRequest(NETWORK.module_address, NETWORK.module_name, "is_frozen"))
        assert info.value.status == 500

    async def test_non_list_view(self, node):
        async with RestLedgerClient(node.url) as client:
            with pytest.raises(LedgerError):
                await client.view(ViewRequest(NETWORK.module_address, NETWORK.module_name, "nope"))

    async def test_reader_over_rest(self, node):
        key = DecryptionKey.generate()
        zero_hex = "0x" + ConfidentialBalance.zero().to_bytes().hex()
        node.views.update({
            "encryption_key": [key.encryption_key().hex()],
            "pending_balance": [zero_hex],
            "actual_balance": [zero_hex],
            "is_frozen": [False],
            "is_normalized": [True],
            "get_auditor": [{"vec": []}],
            "get_global_auditor": [{"vec": []}],
        })
        async with RestLedgerClient(node.url) as client:
            store = await BalanceStoreReader(client, NETWORK).get_store(ALICE, TOKEN)
        assert store.encryption_key == key.encryption_key()
        assert store.normalized and not store.frozen
        assert store.auditor_keys == ()
