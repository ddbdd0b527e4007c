# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PlayerBase — the daemon's view of the media-control core.

A player keeps the session with the core alive and reports four kinds of
callbacks to the daemon, always on the event loop thread:

    on_connected()        transport up, waiting for authorisation
    on_paired(core)       authorisation granted (CoreInfo with name and id)
    on_unpaired()         authorisation revoked / connection lost
    on_zones(fragment)    raw zone fragment (see reconciler.Fragment)

Subclass contract:

    class MyPlayer(PlayerBase):
        id   = "roon"
        name = "Roon"

        async def start(self): ...
        async def control(self, zone_id, action): ...
        async def seek(self, zone_id, how, seconds): ...
        async def change_volume(self, output_id, how, value): ...
        async def mute(self, output_id, how): ...
        async def change_settings(self, zone_id, settings): ...
        async def browse(self, opts) -> dict: ...
        async def load(self, opts) -> dict: ...
        async def get_image(self, image_key, scale, width, height, fmt) -> (bytes, str): ...

Optional overrides:
    stop()                              — close the session
    standby / group_outputs / ungroup_outputs / transfer_zone

Command methods raise PlayerError (or anything else) on failure; the request
router wraps those into stable IPC error codes.
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

log = logging.getLogger(__name__)

IMAGE_CACHE_SIZE = 100         # number of images to cache
IMAGE_FETCH_TIMEOUT = 10       # seconds

TRANSPORT_ACTIONS = ("play", "pause", "playpause", "stop", "previous", "next")


class PlayerError(Exception):
    """A command the core rejected or could not complete."""


@dataclass(frozen=True)
class CoreInfo:
    name: str
    id: str


class ImageCache:
    """Simple LRU cache for fetched images (key -> (bytes, content type))."""

    def __init__(self, max_size=IMAGE_CACHE_SIZE):
        self.max_size = max_size
        self._cache: OrderedDict[tuple, tuple[bytes, str]] = OrderedDict()

    def get(self, key: tuple):
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        return None

    def put(self, key: tuple, data: tuple[bytes, str]):
        if key in self._cache:
            self._cache.move_to_end(key)
        else:
            if len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
        self._cache[key] = data

    def __contains__(self, key: tuple):
        return key in self._cache

    def __len__(self):
        return len(self._cache)


class PlayerBase:
    # ── Subclass must set these ──
    id: str = ""
    name: str = ""

    def __init__(self):
        self._on_connected: Callable[[], None] | None = None
        self._on_paired: Callable[[CoreInfo], None] | None = None
        self._on_unpaired: Callable[[], None] | None = None
        self._on_zones: Callable[[dict], None] | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._image_cache = ImageCache()
        self.core: CoreInfo | None = None

    def set_event_handlers(self, on_connected=None, on_paired=None, on_unpaired=None,
                           on_zones=None):
        """Wire the callbacks the daemon wants to receive."""
        self._on_connected = on_connected
        self._on_paired = on_paired
        self._on_unpaired = on_unpaired
        self._on_zones = on_zones

    # ── Lifecycle ──

    async def start(self):
        raise NotImplementedError

    async def stop(self):
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    # ── Commands (subclass must implement) ──

    async def control(self, zone_id: str, action: str) -> None:
        raise NotImplementedError

    async def seek(self, zone_id: str, how: str, seconds: float) -> None:
        """how: "absolute" or "relative"."""
        raise NotImplementedError

    async def change_volume(self, output_id: str, how: str, value: float) -> None:
        """how: "absolute", "relative" or "relative_step"."""
        raise NotImplementedError

    async def mute(self, output_id: str, how: str) -> None:
        """how: "mute" or "unmute"."""
        raise NotImplementedError

    async def change_settings(self, zone_id: str, settings: dict) -> None:
        """settings: any of {"shuffle": bool, "loop": str, "auto_radio": bool}."""
        raise NotImplementedError

    async def browse(self, opts: dict) -> dict:
        raise NotImplementedError

    async def load(self, opts: dict) -> dict:
        raise NotImplementedError

    async def get_image(self, image_key: str, scale: str, width: int, height: int,
                        fmt: str) -> tuple[bytes, str]:
        raise NotImplementedError

    # ── Optional commands ──

    async def standby(self, output_id: str, control_key: str | None = None) -> None:
        raise PlayerError(f"{self.name or 'Player'} does not support standby")

    async def group_outputs(self, output_ids: list[str]) -> None:
        raise PlayerError(f"{self.name or 'Player'} does not support grouping")

    async def ungroup_outputs(self, output_ids: list[str]) -> None:
        raise PlayerError(f"{self.name or 'Player'} does not support grouping")

    async def transfer_zone(self, from_zone_id: str, to_zone_id: str) -> None:
        raise PlayerError(f"{self.name or 'Player'} does not support zone transfer")

    # ── Callback helpers (call from the event loop thread) ──

    def emit_connected(self):
        if self._on_connected:
            self._on_connected()

    def emit_paired(self, core: CoreInfo):
        self.core = core
        if self._on_paired:
            self._on_paired(core)

    def emit_unpaired(self):
        self.core = None
        if self._on_unpaired:
            self._on_unpaired()

    def emit_zones(self, fragment: dict):
        if self._on_zones:
            self._on_zones(fragment)

    # ── Image helpers ──

    async def fetch_image(self, url: str, cache_key: tuple) -> tuple[bytes, str]:
        """Fetch image bytes from *url*, cached under *cache_key*.

        Raises:
            PlayerError: If the image cannot be fetched or is empty.
        """
        cached = self._image_cache.get(cache_key)
        if cached is not None:
            log.debug("Image cache hit for %s", cache_key[0])
            return cached

        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        try:
            async with self._http_session.get(
                url, timeout=aiohttp.ClientTimeout(total=IMAGE_FETCH_TIMEOUT),
            ) as resp:
                resp.raise_for_status()
                data = await resp.read()
                content_type = resp.content_type or "image/jpeg"
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PlayerError(f"Image fetch failed: {e}") from e

        if not data:
            raise PlayerError("Image fetch returned 0 bytes")
        result = (data, content_type)
        self._image_cache.put(cache_key, result)
        log.debug("Cached image %s (%d items in cache)", cache_key[0], len(self._image_cache))
        return result
