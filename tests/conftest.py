"""Test fixtures for roond tests."""

from typing import Any

import pytest

from roond.lib.broadcaster import EventBroadcaster
from roond.lib.cache import EntityCache
from roond.lib.player_base import PlayerBase, PlayerError
from roond.lib.reconciler import Reconciler
from roond.lib.request_router import RequestRouter


def raw_output(output_id: str, name: str, zone_id: str, value: float | None = 20,
               muted: bool = False, **extra: Any) -> dict:
    """Build a raw output as the core sends it."""
    raw = {"output_id": output_id, "display_name": name, "zone_id": zone_id}
    if value is not None:
        raw["volume"] = {"type": "number", "min": 0, "max": 100, "value": value,
                         "step": 1, "is_muted": muted}
    raw.update(extra)
    return raw


def raw_zone(zone_id: str = "z1", name: str = "Kitchen", state: str = "playing",
             outputs: list[dict] | None = None, track: str | None = "Song",
             artist: str = "Artist", album: str = "Album", seek: float | None = 10,
             length: float | None = 240, **extra: Any) -> dict:
    """Build a raw zone as the core sends it."""
    raw: dict[str, Any] = {
        "zone_id": zone_id,
        "display_name": name,
        "state": state,
        "outputs": outputs if outputs is not None else [
            raw_output(f"o-{zone_id}", f"{name} Speaker", zone_id)],
        "settings": {"loop": "disabled", "shuffle": False, "auto_radio": False},
        "queue_items_remaining": 5,
        "queue_time_remaining": 600,
        "is_play_allowed": state != "playing",
        "is_pause_allowed": state == "playing",
        "is_seek_allowed": True,
        "is_next_allowed": True,
        "is_previous_allowed": True,
    }
    if track is not None:
        raw["now_playing"] = {
            "seek_position": seek,
            "length": length,
            "image_key": "img-" + zone_id,
            "one_line": {"line1": f"{track} - {artist}"},
            "two_line": {"line1": track, "line2": artist},
            "three_line": {"line1": track, "line2": artist, "line3": album},
        }
    raw.update(extra)
    return raw


class FakePlayer(PlayerBase):
    """Player that records calls and serves canned browse / image results."""

    id = "fake"
    name = "Fake"

    def __init__(self):
        super().__init__()
        self.calls: list[tuple] = []
        self.browse_results: list[dict] = []
        self.load_result: dict = {"items": []}
        self.image: tuple[bytes, str] = (b"\xff\xd8jpeg", "image/jpeg")
        self.fail_with: Exception | None = None
        self.started = False

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with:
            raise self.fail_with

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False
        await super().stop()

    async def control(self, zone_id, action):
        self._record("control", zone_id, action)

    async def seek(self, zone_id, how, seconds):
        self._record("seek", zone_id, how, seconds)

    async def change_volume(self, output_id, how, value):
        self._record("change_volume", output_id, how, value)

    async def mute(self, output_id, how):
        self._record("mute", output_id, how)

    async def change_settings(self, zone_id, settings):
        self._record("change_settings", zone_id, settings)

    async def browse(self, opts):
        self._record("browse", opts)
        if self.browse_results:
            return self.browse_results.pop(0)
        return {"action": "list", "list": {"title": "Library", "count": 0, "level": 0}}

    async def load(self, opts):
        self._record("load", opts)
        return self.load_result

    async def get_image(self, image_key, scale, width, height, fmt):
        self._record("get_image", image_key, scale, width, height, fmt)
        if image_key == "missing":
            raise PlayerError("Image not found")
        return self.image

    async def standby(self, output_id, control_key=None):
        self._record("standby", output_id, control_key)

    async def group_outputs(self, output_ids):
        self._record("group_outputs", output_ids)

    async def ungroup_outputs(self, output_ids):
        self._record("ungroup_outputs", output_ids)

    async def transfer_zone(self, from_zone_id, to_zone_id):
        self._record("transfer_zone", from_zone_id, to_zone_id)


def browse_items(*titles: str) -> dict:
    """A load result with one item per title (keys k1, k2, ...)."""
    return {"items": [{"item_key": f"k{i}", "title": t, "hint": "list"}
                      for i, t in enumerate(titles, 1)]}


@pytest.fixture
def cache() -> EntityCache:
    """Return a fresh, empty EntityCache."""
    return EntityCache()


@pytest.fixture
def notifications() -> list:
    """Collects everything the reconciler emits."""
    return []


@pytest.fixture
def reconciler(cache: EntityCache, notifications: list) -> Reconciler:
    """Return a Reconciler writing notifications into the ``notifications`` list."""
    return Reconciler(cache, notifications.append)


@pytest.fixture
def ready_cache(cache: EntityCache, reconciler: Reconciler) -> EntityCache:
    """Cache that is paired and holds two zones (Kitchen z1, Living Room z2)."""
    reconciler.set_connection_status(True, True, "Test Core", "core-1")
    reconciler.apply_fragment({"zones": [
        raw_zone("z1", "Kitchen"),
        raw_zone("z2", "Living Room", state="paused", outputs=[
            raw_output("o2a", "Left", "z2"),
            raw_output("o2b", "Right", "z2", value=30),
        ]),
    ]})
    return cache


@pytest.fixture
def player() -> FakePlayer:
    """Return a fresh FakePlayer."""
    return FakePlayer()


@pytest.fixture
def router(ready_cache: EntityCache, player: FakePlayer) -> RequestRouter:
    """RequestRouter over the ready cache and the fake player."""
    return RequestRouter(ready_cache, player)


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    """Return a fresh EventBroadcaster."""
    return EventBroadcaster()
