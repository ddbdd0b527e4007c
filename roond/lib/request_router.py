# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
RequestRouter — one-shot IPC methods.

    router = RequestRouter(cache, player)
    result = await router.handle("volume", {"output": "Kitchen", "value": 5, "relative": True})

Every method except ``status`` is refused with NOT_CONNECTED / NOT_PAIRED
until the core session is ready.  Zone and output references accept an id
or a display name (case-insensitive); with no reference the first zone (or
the first output of the first zone) is used.

Parameter and reference errors are raised before the player is touched.
Anything the player raises is re-wrapped into an IPCError with a stable
code and the original message.

``subscribe`` / ``unsubscribe`` belong to the connection, not the router;
the listener handles them.
"""

import base64
import logging
from typing import Any

from .cache import EntityCache
from .models import LOOP_MODES, Output, Zone, parse_browse_result, parse_queue_item
from .player_base import PlayerBase
from .protocol import ErrorCode, IPCError

logger = logging.getLogger(__name__)

# Methods answered even when the core session is not ready
UNGATED_METHODS = frozenset({"status"})

# Loop cycle used by ``loop {mode: "next"}``
LOOP_CYCLE = {"disabled": "loop", "loop": "loop_one", "loop_one": "disabled"}

IMAGE_SCALES = ("fit", "fill", "stretch")
IMAGE_FORMATS = ("image/jpeg", "image/png")
DEFAULT_IMAGE_SIZE = 300

DEFAULT_BROWSE_COUNT = 100


def _invalid(message: str) -> IPCError:
    return IPCError(ErrorCode.INVALID_PARAMS, message)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_str(params: dict, key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise _invalid(f"{key} must be a non-empty string")
    return value


def _optional_bool(params: dict, key: str) -> bool | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise _invalid(f"{key} must be a boolean")
    return value


def _optional_int(params: dict, key: str, default: int, minimum: int) -> int:
    value = params.get(key)
    if value is None:
        return default
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise _invalid(f"{key} must be an integer >= {minimum}")
    return value


class RequestRouter:
    def __init__(self, cache: EntityCache, player: PlayerBase):
        self.cache = cache
        self.player = player

        # Browse session: the most recent non-empty item list and its hierarchy
        self.browse_items: list[dict] = []
        self.browse_hierarchy = "browse"

        self._handlers = {
            "status": self._status,
            "play": self._transport,
            "pause": self._transport,
            "playpause": self._transport,
            "stop": self._transport,
            "next": self._transport,
            "previous": self._transport,
            "seek": self._seek,
            "volume": self._volume,
            "mute": self._mute,
            "unmute": self._mute,
            "zones": self._zones,
            "zone": self._zone,
            "outputs": self._outputs,
            "shuffle": self._shuffle,
            "loop": self._loop,
            "radio": self._radio,
            "browse": self._browse,
            "search": self._search,
            "select": self._select,
            "back": self._back,
            "queue": self._queue,
            "album-art": self._album_art,
            "group": self._group,
            "ungroup": self._ungroup,
            "standby": self._standby,
            "transfer": self._transfer,
        }

    async def handle(self, method: str, params: dict | None = None) -> Any:
        """Run *method* and return its result.

        Raises:
            IPCError: For every failure; the code says which kind.
        """
        handler = self._handlers.get(method)
        if handler is None:
            raise _invalid(f"Unknown method: {method}")
        if method not in UNGATED_METHODS:
            self.require_ready()
        logger.debug("-> %s %s", method, params or {})
        return await handler(method, params or {})

    # ── Readiness and references ──

    def require_ready(self):
        if self.cache.is_ready():
            return
        if self.cache.status.connected:
            raise IPCError(ErrorCode.NOT_PAIRED,
                           "Not paired with Roon Core. Enable the extension in "
                           "Roon Settings > Extensions")
        raise IPCError(ErrorCode.NOT_CONNECTED, "Not connected to Roon Core")

    def resolve_zone(self, ref: str | None) -> Zone:
        if ref is None:
            zone = self.cache.get_first_zone()
            if zone is None:
                raise IPCError(ErrorCode.ZONE_NOT_FOUND, "No zones available")
            return zone
        if not isinstance(ref, str) or not ref:
            raise _invalid("zone must be a non-empty string")
        zone = self.cache.get_zone(ref)
        if zone is None:
            raise IPCError(ErrorCode.ZONE_NOT_FOUND, f"Zone not found: {ref}")
        return zone

    def resolve_output(self, ref: str | None) -> Output:
        if ref is None:
            first = self.cache.get_first_zone()
            output = self.cache.get_first_output_of_zone(first.zone_id) if first else None
            if output is None:
                raise IPCError(ErrorCode.OUTPUT_NOT_FOUND, "No outputs available")
            return output
        if not isinstance(ref, str) or not ref:
            raise _invalid("output must be a non-empty string")
        output = self.cache.get_output(ref)
        if output is None:
            raise IPCError(ErrorCode.OUTPUT_NOT_FOUND, f"Output not found: {ref}")
        return output

    async def _call(self, coro, code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR):
        """Await a player call, re-coding its failures."""
        try:
            return await coro
        except IPCError:
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning("Player call failed (%s): %s", code.name, message)
            raise IPCError(code, message) from e

    # ── Status and queries ──

    async def _status(self, method, params):
        return self.cache.snapshot()

    async def _zones(self, method, params):
        return [z.to_dict() for z in self.cache.list_zones()]

    async def _zone(self, method, params):
        return self.resolve_zone(params.get("zone")).to_dict()

    async def _outputs(self, method, params):
        return [o.to_dict() for o in self.cache.list_outputs()]

    # ── Transport ──

    async def _transport(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        await self._call(self.player.control(zone.zone_id, method))
        return {"success": True}

    async def _seek(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        seconds = params.get("seconds")
        if not _is_number(seconds):
            raise _invalid("seconds parameter required")
        relative = _optional_bool(params, "relative")
        await self._call(self.player.seek(
            zone.zone_id, "relative" if relative else "absolute", seconds))
        return {"success": True}

    # ── Volume ──

    async def _volume(self, method, params):
        output = self.resolve_output(params.get("output"))
        value = params.get("value")
        if not _is_number(value):
            raise _invalid("value parameter required")
        relative = _optional_bool(params, "relative")
        await self._call(self.player.change_volume(
            output.output_id, "relative_step" if relative else "absolute", value))
        return {"success": True}

    async def _mute(self, method, params):
        output = self.resolve_output(params.get("output"))
        await self._call(self.player.mute(output.output_id, method))
        return {"success": True}

    # ── Settings ──

    async def _shuffle(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        enabled = _optional_bool(params, "enabled")
        if enabled is None:
            enabled = not zone.settings.shuffle
        await self._call(self.player.change_settings(zone.zone_id, {"shuffle": enabled}))
        return {"success": True, "enabled": enabled}

    async def _radio(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        enabled = _optional_bool(params, "enabled")
        if enabled is None:
            enabled = not zone.settings.auto_radio
        await self._call(self.player.change_settings(zone.zone_id, {"auto_radio": enabled}))
        return {"success": True, "enabled": enabled}

    async def _loop(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        mode = params.get("mode")
        current = zone.settings.loop
        if mode is None:
            mode = "disabled" if current != "disabled" else "loop"
        elif mode == "next":
            mode = LOOP_CYCLE.get(current, "loop")
        elif mode not in LOOP_MODES:
            raise _invalid("Invalid loop mode")
        await self._call(self.player.change_settings(zone.zone_id, {"loop": mode}))
        return {"success": True, "mode": mode}

    # ── Browse ──

    def _browse_zone_id(self, params) -> str | None:
        """Explicit zone ref must resolve; otherwise the first zone, if any."""
        if params.get("zone") is not None:
            return self.resolve_zone(params["zone"]).zone_id
        first = self.cache.get_first_zone()
        return first.zone_id if first else None

    async def _browse_and_load(self, opts: dict, offset: int, count: int) -> dict:
        opts = {k: v for k, v in opts.items() if v is not None}
        result = await self._call(self.player.browse(opts), ErrorCode.BROWSE_ERROR)
        if not isinstance(result, dict):
            result = {}
        load_result = None
        if result.get("action") == "list" and isinstance(result.get("list"), dict):
            load_result = await self._call(self.player.load({
                "hierarchy": opts["hierarchy"],
                "offset": offset,
                "count": count,
                "set_display_offset": offset,
            }), ErrorCode.BROWSE_ERROR)
        browse_result = parse_browse_result(
            result, load_result if isinstance(load_result, dict) else None)

        if browse_result["items"]:
            self.browse_items = browse_result["items"]
            self.browse_hierarchy = opts["hierarchy"]
        return browse_result

    def _paging(self, params) -> tuple[int, int]:
        return (_optional_int(params, "offset", 0, 0),
                _optional_int(params, "count", DEFAULT_BROWSE_COUNT, 1))

    async def _browse(self, method, params):
        hierarchy = _optional_str(params, "hierarchy") or "browse"
        offset, count = self._paging(params)
        opts = {
            "hierarchy": hierarchy,
            "zone_or_output_id": self._browse_zone_id(params),
            "item_key": _optional_str(params, "itemKey"),
            "input": _optional_str(params, "input"),
            "pop_all": _optional_bool(params, "popAll"),
            "pop_levels": (_optional_int(params, "popLevels", 1, 1)
                           if params.get("popLevels") is not None else None),
            "refresh_list": _optional_bool(params, "refresh"),
        }
        return await self._browse_and_load(opts, offset, count)

    async def _search(self, method, params):
        query = params.get("query")
        if not isinstance(query, str) or not query.strip():
            raise _invalid("query parameter required")
        offset, count = self._paging(params)
        zone_id = self._browse_zone_id(params)

        # A search starts a fresh navigation
        self.browse_items = []
        self.browse_hierarchy = "search"
        return await self._browse_and_load({
            "hierarchy": "search",
            "zone_or_output_id": zone_id,
            "input": query,
            "pop_all": True,
        }, offset, count)

    async def _select(self, method, params):
        item_key = _optional_str(params, "itemKey")
        index = params.get("index")
        if item_key is None:
            if index is None:
                raise _invalid("itemKey or index required")
            if not isinstance(index, int) or isinstance(index, bool):
                raise _invalid("index must be an integer")
            if not 1 <= index <= len(self.browse_items):
                raise _invalid(f"Invalid index {index}. "
                               f"Last browse had {len(self.browse_items)} items.")
            item_key = self.browse_items[index - 1].get("itemKey")
            if not item_key:
                raise _invalid(f"Item {index} cannot be selected")

        offset, count = self._paging(params)
        return await self._browse_and_load({
            "hierarchy": self.browse_hierarchy,
            "zone_or_output_id": self._browse_zone_id(params),
            "item_key": item_key,
            "input": _optional_str(params, "input"),
        }, offset, count)

    async def _back(self, method, params):
        levels = _optional_int(params, "levels", 1, 1)
        offset, count = self._paging(params)
        return await self._browse_and_load({
            "hierarchy": self.browse_hierarchy,
            "zone_or_output_id": self._browse_zone_id(params),
            "pop_levels": levels,
        }, offset, count)

    async def _queue(self, method, params):
        zone = self.resolve_zone(params.get("zone"))
        offset, count = self._paging(params)
        result = await self._call(self.player.browse({
            "hierarchy": "queue",
            "zone_or_output_id": zone.zone_id,
        }))
        if not isinstance(result, dict) or result.get("action") != "list":
            return []
        loaded = await self._call(self.player.load({
            "hierarchy": "queue",
            "offset": offset,
            "count": count,
        }))
        items = loaded.get("items") if isinstance(loaded, dict) else None
        return [parse_queue_item(i) for i in items or [] if isinstance(i, dict)]

    # ── Images ──

    async def get_image(self, image_key, scale="fit", width=DEFAULT_IMAGE_SIZE,
                        height=DEFAULT_IMAGE_SIZE, fmt="image/jpeg") -> tuple[bytes, str]:
        """Fetch image bytes through the player. Shared with the HTTP proxy."""
        self.require_ready()
        if not isinstance(image_key, str) or not image_key:
            raise _invalid("imageKey parameter required")
        if scale not in IMAGE_SCALES:
            raise _invalid(f"Invalid scale: {scale}")
        if fmt not in IMAGE_FORMATS:
            raise _invalid(f"Invalid format: {fmt}")
        for name, value in (("width", width), ("height", height)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise _invalid(f"{name} must be a positive integer")
        data, content_type = await self._call(
            self.player.get_image(image_key, scale, width, height, fmt),
            ErrorCode.IMAGE_NOT_FOUND)
        return data, content_type or fmt

    async def _album_art(self, method, params):
        data, content_type = await self.get_image(
            params.get("imageKey"),
            params.get("scale", "fit"),
            params.get("width", DEFAULT_IMAGE_SIZE),
            params.get("height", DEFAULT_IMAGE_SIZE),
            params.get("format", "image/jpeg"),
        )
        return {"contentType": content_type,
                "data": base64.b64encode(data).decode("ascii")}

    # ── Grouping, standby, transfer ──

    def _output_list(self, params, minimum: int) -> list[str]:
        refs = params.get("outputs")
        if not isinstance(refs, list) or len(refs) < minimum:
            raise _invalid(f"outputs must list at least {minimum} output(s)")
        ids = []
        for ref in refs:
            if not isinstance(ref, str) or not ref:
                raise _invalid("outputs must be non-empty strings")
            output_id = self.resolve_output(ref).output_id
            if output_id not in ids:
                ids.append(output_id)
        return ids

    async def _group(self, method, params):
        ids = self._output_list(params, 2)
        if len(ids) < 2:
            raise _invalid("outputs must name at least 2 distinct outputs")
        await self._call(self.player.group_outputs(ids))
        return {"success": True, "outputs": ids}

    async def _ungroup(self, method, params):
        ids = self._output_list(params, 1)
        await self._call(self.player.ungroup_outputs(ids))
        return {"success": True, "outputs": ids}

    async def _standby(self, method, params):
        output = self.resolve_output(params.get("output"))
        control_key = _optional_str(params, "controlKey")
        await self._call(self.player.standby(output.output_id, control_key))
        return {"success": True}

    async def _transfer(self, method, params):
        if params.get("from") is None or params.get("to") is None:
            raise _invalid("from and to parameters required")
        source = self.resolve_zone(params["from"])
        target = self.resolve_zone(params["to"])
        if source.zone_id == target.zone_id:
            raise _invalid("Cannot transfer a zone to itself")
        await self._call(self.player.transfer_zone(source.zone_id, target.zone_id))
        return {"success": True}
