"""Tests for Daemon wiring: player callbacks to cache, events and status."""

import asyncio
import json
import os
import tempfile

import pytest

from roond.daemon import Daemon
from roond.lib.player_base import CoreInfo

from conftest import FakePlayer, raw_zone


@pytest.fixture
def socket_path() -> str:
    """Short socket path (unix socket paths are length-limited)."""
    with tempfile.TemporaryDirectory(prefix="roond") as tmp:
        yield os.path.join(tmp, "roond.sock")


@pytest.fixture
def daemon(player: FakePlayer, socket_path: str) -> Daemon:
    """Daemon over the fake player, HTTP proxy disabled."""
    return Daemon(player, socket_path=socket_path, http_port=0)


class TestCallbacks:
    """Tests for the player -> reconciler wiring."""

    def test_connected_then_paired(self, daemon: Daemon, player: FakePlayer) -> None:
        """Connection then pairing makes the daemon ready."""
        player.emit_connected()
        assert daemon.cache.status.connected is True
        assert not daemon.cache.is_ready()
        player.emit_paired(CoreInfo(name="Core", id="c1"))
        assert daemon.cache.is_ready()
        assert daemon.cache.status.core_name == "Core"

    def test_zones_reach_cache(self, daemon: Daemon, player: FakePlayer) -> None:
        """Zone fragments are reconciled into the cache."""
        player.emit_zones({"zones": [raw_zone("z1")]})
        assert daemon.cache.get_zone("z1") is not None

    def test_unpaired_clears_zones(self, daemon: Daemon, player: FakePlayer) -> None:
        """Unpairing drops status and all cached zones."""
        player.emit_paired(CoreInfo(name="Core", id="c1"))
        player.emit_zones({"zones": [raw_zone("z1")]})
        player.emit_unpaired()
        assert not daemon.cache.status.connected
        assert daemon.cache.list_zones() == []
        assert daemon.cache.list_outputs() == []

    def test_http_disabled_by_zero_port(self, daemon: Daemon) -> None:
        """http_port 0 disables the proxy."""
        assert daemon.http is None


class TestLifecycle:
    """Tests for start / stop and end-to-end events."""

    async def test_start_stop(self, daemon: Daemon, player: FakePlayer,
                              socket_path: str) -> None:
        """start binds the socket and starts the player; stop undoes both."""
        await daemon.start()
        assert player.started
        assert os.path.exists(socket_path)
        await daemon.stop()
        assert not player.started
        assert not os.path.exists(socket_path)

    async def test_events_end_to_end(self, daemon: Daemon, player: FakePlayer,
                                     socket_path: str) -> None:
        """A subscriber sees connection and zone events driven by the player."""
        await daemon.start()
        try:
            reader, writer = await asyncio.open_unix_connection(socket_path)
            writer.write(b'{"id":"s","method":"subscribe","params":'
                         b'{"events":["connection","zones"]}}\n')
            await writer.drain()
            assert json.loads(await reader.readline())["result"]["subscribed"] is True

            player.emit_paired(CoreInfo(name="Core", id="c1"))
            player.emit_zones({"zones": [raw_zone("z1")]})
            connection = json.loads(await asyncio.wait_for(reader.readline(), 2))
            zones = json.loads(await asyncio.wait_for(reader.readline(), 2))
            assert connection["event"] == "connection"
            assert connection["data"]["paired"] is True
            assert zones["event"] == "zones"
            assert zones["data"]["zones"][0]["zoneId"] == "z1"

            writer.write(b'{"id":"p","method":"play"}\n')
            await writer.drain()
            assert json.loads(await asyncio.wait_for(reader.readline(), 2))["result"] == {
                "success": True}
            assert player.calls == [("control", "z1", "play")]

            writer.close()
            await writer.wait_closed()
        finally:
            await daemon.stop()

    async def test_bind_failure_exits_1(self, player: FakePlayer) -> None:
        """An unbindable socket path makes run() return 1."""
        daemon = Daemon(player, socket_path="/nonexistent-dir/roond.sock", http_port=0)
        assert await daemon.run() == 1
        assert not player.started
