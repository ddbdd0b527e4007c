"""Tests for ConnectionListener over a real unix socket."""

import asyncio
import json
import os
import stat
import tempfile
from collections.abc import AsyncGenerator

import pytest

from roond.lib.broadcaster import EventBroadcaster
from roond.lib.cache import EntityCache
from roond.lib.listener import ConnectionListener
from roond.lib.reconciler import Reconciler
from roond.lib.request_router import RequestRouter

from conftest import FakePlayer, raw_zone


class Client:
    """Minimal line-protocol client."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    async def send_raw(self, line: str) -> None:
        self.writer.write(line.encode() + b"\n")
        await self.writer.drain()

    async def send(self, message: dict) -> None:
        await self.send_raw(json.dumps(message))

    async def recv(self, timeout: float = 2.0) -> dict:
        line = await asyncio.wait_for(self.reader.readline(), timeout)
        assert line, "connection closed"
        return json.loads(line)

    async def call(self, method: str, params: dict | None = None, id: str = "1") -> dict:
        message = {"id": id, "method": method}
        if params is not None:
            message["params"] = params
        await self.send(message)
        return await self.recv()

    async def close(self) -> None:
        self.writer.close()
        await self.writer.wait_closed()


@pytest.fixture
def socket_path() -> str:
    """Short socket path (unix socket paths are length-limited)."""
    with tempfile.TemporaryDirectory(prefix="roond") as tmp:
        yield os.path.join(tmp, "roond.sock")


@pytest.fixture
async def daemon_parts(socket_path: str, ready_cache: EntityCache, reconciler: Reconciler,
                       player: FakePlayer) -> AsyncGenerator[tuple, None]:
    """A started listener wired to a broadcaster publishing reconciler output."""
    broadcaster = EventBroadcaster()
    reconciler.set_notification_sink(broadcaster.publish)
    router = RequestRouter(ready_cache, player)
    listener = ConnectionListener(socket_path, router, broadcaster, ready_cache)
    await listener.start()
    yield listener, broadcaster, reconciler
    await listener.stop()


@pytest.fixture
async def client(daemon_parts, socket_path: str) -> AsyncGenerator[Client, None]:
    """A connected client."""
    reader, writer = await asyncio.open_unix_connection(socket_path)
    c = Client(reader, writer)
    yield c
    if not writer.is_closing():
        await c.close()


async def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not met"
        await asyncio.sleep(0.01)


class TestSocket:
    """Tests for binding and cleanup."""

    async def test_socket_permissions(self, daemon_parts, socket_path: str) -> None:
        """The socket is owner-only."""
        mode = stat.S_IMODE(os.stat(socket_path).st_mode)
        assert mode == 0o600

    async def test_stale_socket_replaced(self, socket_path: str, ready_cache: EntityCache,
                                         player: FakePlayer) -> None:
        """A leftover file at the socket path is removed on start."""
        with open(socket_path, "w") as f:
            f.write("stale")
        listener = ConnectionListener(socket_path, RequestRouter(ready_cache, player),
                                      EventBroadcaster(), ready_cache)
        await listener.start()
        assert stat.S_ISSOCK(os.stat(socket_path).st_mode)
        await listener.stop()
        assert not os.path.exists(socket_path)


class TestRequests:
    """Tests for request / response framing."""

    async def test_status(self, client: Client) -> None:
        """A request gets a response with the same id."""
        response = await client.call("status", id="abc")
        assert response["id"] == "abc"
        assert response["result"]["coreName"] == "Test Core"

    async def test_numeric_id(self, client: Client) -> None:
        """Integer ids are echoed back."""
        await client.send({"id": 7, "method": "zones"})
        response = await client.recv()
        assert response["id"] == 7
        assert len(response["result"]) == 2

    async def test_command_reaches_player(self, client: Client, player: FakePlayer) -> None:
        """Commands are routed to the player."""
        response = await client.call("play", {"zone": "Kitchen"})
        assert response == {"id": "1", "result": {"success": True}}
        assert player.calls == [("control", "z1", "play")]

    async def test_error_response(self, client: Client) -> None:
        """IPC errors become error responses."""
        response = await client.call("play", {"zone": "Garage"})
        assert response["error"]["code"] == 3
        assert "Garage" in response["error"]["message"]

    async def test_invalid_json_keeps_connection(self, client: Client) -> None:
        """Bad JSON gets an 'invalid' error and the connection stays usable."""
        await client.send_raw("{not json")
        response = await client.recv()
        assert response == {"id": "invalid",
                            "error": {"code": 5, "message": "Invalid JSON"}}
        assert "result" in await client.call("status")

    async def test_missing_method(self, client: Client) -> None:
        """A request without method is answered at its id."""
        await client.send({"id": "x1"})
        response = await client.recv()
        assert response["id"] == "x1"
        assert response["error"] == {"code": 5, "message": "Missing id or method"}

    async def test_missing_id(self, client: Client) -> None:
        """A request without id is answered at 'unknown'."""
        await client.send({"method": "status"})
        assert (await client.recv())["id"] == "unknown"

    async def test_blank_lines_ignored(self, client: Client) -> None:
        """Empty lines produce no response."""
        await client.send_raw("")
        await client.send_raw("   ")
        assert (await client.call("status", id="after"))["id"] == "after"

    async def test_several_lines_in_one_write(self, client: Client) -> None:
        """Pipelined requests in one chunk are all answered."""
        client.writer.write(b'{"id":"a","method":"zones"}\n{"id":"b","method":"outputs"}\n')
        await client.writer.drain()
        ids = {(await client.recv())["id"], (await client.recv())["id"]}
        assert ids == {"a", "b"}

    async def test_unhandled_exception_is_unknown(self, client: Client,
                                                  daemon_parts) -> None:
        """Unexpected handler errors map to UNKNOWN."""
        listener = daemon_parts[0]

        async def explode(method, params):
            raise RuntimeError("kaboom")

        listener.router.handle = explode
        response = await client.call("play")
        assert response["error"] == {"code": 99, "message": "kaboom"}


class TestSubscriptions:
    """Tests for subscribe / unsubscribe and push events."""

    async def test_subscribe_and_receive(self, client: Client, daemon_parts) -> None:
        """Subscribed events are pushed with zoneId and timestamp."""
        _, broadcaster, reconciler = daemon_parts
        response = await client.call("subscribe", {"events": ["state"]})
        assert response["result"] == {"subscribed": True, "events": ["state"], "zones": []}

        changed = raw_zone("z1", "Kitchen", state="paused")
        reconciler.apply_fragment({"zones_changed": [changed]})
        event = await client.recv()
        assert event["event"] == "state"
        assert event["zoneId"] == "z1"
        assert event["data"]["state"] == "paused"
        assert "id" not in event
        assert isinstance(event["timestamp"], int)

    async def test_zone_names_resolved(self, client: Client) -> None:
        """Zone names resolve to ids; unknown zones are dropped."""
        response = await client.call("subscribe", {"events": ["track"],
                                                   "zones": ["living room", "Attic"]})
        assert response["result"]["zones"] == ["z2"]

    async def test_zone_filter_applies(self, client: Client, daemon_parts) -> None:
        """Events for other zones are not delivered."""
        _, _, reconciler = daemon_parts
        await client.call("subscribe", {"events": ["position"], "zones": ["z2"]})
        reconciler.apply_fragment({"zones_seek_changed": [{"zone_id": "z1", "seek_position": 1}]})
        reconciler.apply_fragment({"zones_seek_changed": [{"zone_id": "z2", "seek_position": 2}]})
        event = await client.recv()
        assert event["zoneId"] == "z2"
        assert event["data"]["seekPosition"] == 2

    async def test_invalid_event_type(self, client: Client) -> None:
        """Unknown event types are rejected."""
        response = await client.call("subscribe", {"events": ["state", "weather"]})
        assert response["error"]["code"] == 5

    async def test_unsubscribe_idempotent(self, client: Client, daemon_parts) -> None:
        """unsubscribe works with or without a subscription."""
        _, broadcaster, _ = daemon_parts
        assert (await client.call("unsubscribe"))["result"] == {"unsubscribed": True}
        await client.call("subscribe", {"events": ["state"]})
        assert broadcaster.subscriber_count == 1
        assert (await client.call("unsubscribe"))["result"] == {"unsubscribed": True}
        assert broadcaster.subscriber_count == 0

    async def test_subscription_works_before_pairing(self, socket_path: str,
                                                     cache: EntityCache,
                                                     player: FakePlayer) -> None:
        """subscribe is not gated on readiness."""
        broadcaster = EventBroadcaster()
        listener = ConnectionListener(socket_path, RequestRouter(cache, player),
                                      broadcaster, cache)
        await listener.start()
        try:
            reader, writer = await asyncio.open_unix_connection(socket_path)
            c = Client(reader, writer)
            response = await c.call("subscribe", {"events": ["connection"]})
            assert response["result"]["subscribed"] is True
            refused = await c.call("play", id="2")
            assert refused["error"]["code"] == 1
            await c.close()
        finally:
            await listener.stop()

    async def test_disconnect_removes_subscription(self, client: Client,
                                                   daemon_parts) -> None:
        """Closing the socket drops the subscription."""
        _, broadcaster, _ = daemon_parts
        await client.call("subscribe", {"events": ["state"]})
        assert broadcaster.subscriber_count == 1
        await client.close()
        await wait_for(lambda: broadcaster.subscriber_count == 0)

    async def test_other_subscribers_unaffected(self, daemon_parts, socket_path: str) -> None:
        """One client going away does not stop delivery to another."""
        _, broadcaster, reconciler = daemon_parts
        clients = []
        for _ in range(2):
            reader, writer = await asyncio.open_unix_connection(socket_path)
            clients.append(Client(reader, writer))
        for c in clients:
            await c.call("subscribe", {"events": ["zones"]})
        await clients[0].close()
        await wait_for(lambda: broadcaster.subscriber_count == 1)

        reconciler.apply_fragment({"zones_removed": ["z2"]})
        event = await clients[1].recv()
        assert event["data"] == {"removed": ["z2"]}
        await clients[1].close()
