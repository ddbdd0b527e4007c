# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Roon Core adapter (roonapi).

Connects to the Roon Core at ``core.host`` / ``core.port``, or to the first
core found by discovery when no host is configured.  The first connection
has to be approved in Roon (Settings > Extensions); the authorisation token
is then kept in ``core.token_file`` so later starts pair on their own.

roonapi is thread-based: its calls block and its callbacks arrive on its own
socket thread.  Blocking calls run in a small thread pool and callbacks are
handed to the event loop with ``call_soon_threadsafe``, so the daemon only
ever sees them on the loop thread.

Zones come from the core's own transport subscription, not from roonapi's
state callbacks (those fold additions into "changed" and never report
removals).  Each message is passed on as a raw fragment:

    Subscribed         {"zones": [...]}            full snapshot
    Changed            {"zones_added": [...], "zones_changed": [...],
                        "zones_removed": [ids],
                        "zones_seek_changed": [{zone_id, seek_position, queue_time_remaining}]}

Command replies from roonapi are the JSON body, the bare MOO header
("MOO/1 COMPLETE Success") or None when the core did not answer in time;
anything but a body or a Success header is a PlayerError.
"""

import asyncio
import functools
import logging
import os
from concurrent.futures import ThreadPoolExecutor

from roonapi import RoonApi, RoonDiscovery

from .. import __version__
from ..lib.config import DEFAULT_CORE_PORT, DEFAULT_TOKEN_FILE, cfg
from ..lib.player_base import TRANSPORT_ACTIONS, CoreInfo, PlayerBase, PlayerError

logger = logging.getLogger(__name__)

APP_INFO = {
    "extension_id": "com.roon-cli.daemon",
    "display_name": "Roon CLI",
    "display_version": __version__,
    "publisher": "roon-cli",
    "email": "roon-cli@users.noreply.github.com",
    "website": "https://github.com/roon-cli/roond",
}

SERVICE_TRANSPORT = "com.roonlabs.transport:2"

ZONE_KEYS = ("zones", "zones_added", "zones_changed", "zones_removed", "zones_seek_changed")

POLL_INTERVAL = 1.0            # seconds between session state checks
RECONNECT_DELAY = 10.0         # seconds to wait after a failed connection attempt
DEFAULT_DISCOVERY_TIMEOUT = 10.0


class RoonPlayer(PlayerBase):
    id = "roon"
    name = "Roon"

    def __init__(self, host=None, port=None, token_file=None, discovery_timeout=None):
        super().__init__()
        self.host = host if host is not None else cfg("core", "host")
        self.port = port or cfg("core", "port", default=DEFAULT_CORE_PORT)
        self.token_file = os.path.expanduser(
            token_file or cfg("core", "token_file", default=DEFAULT_TOKEN_FILE))
        self.discovery_timeout = discovery_timeout or cfg(
            "core", "discovery_timeout", default=DEFAULT_DISCOVERY_TIMEOUT)

        self._api: RoonApi | None = None
        self._paired = False
        # Websocket carrying our zone subscription; roonapi replaces it on reconnect
        self._zone_socket = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._monitor_task: asyncio.Task | None = None
        # Thread pool for blocking roonapi calls
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="roon")

    # ── Lifecycle ──

    async def start(self):
        self._loop = asyncio.get_running_loop()
        self._monitor_task = asyncio.create_task(self._monitor())

    async def stop(self):
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        api, self._api = self._api, None
        if api is not None:
            await self._loop.run_in_executor(self._executor, api.stop)
        self._executor.shutdown(wait=False)
        await super().stop()

    async def _monitor(self):
        """Connect, then follow the session's ready flag (roonapi reconnects on its own)."""
        while True:
            if self._api is None:
                try:
                    await self._connect()
                except Exception as e:
                    logger.warning("Roon Core connection failed: %s (retrying in %.0fs)",
                                   e, RECONNECT_DELAY)
                    await asyncio.sleep(RECONNECT_DELAY)
                    continue

            socket = self._api._roonsocket
            ready = self._session_ready(self._api)
            if ready and not self._paired:
                self._on_ready()
            elif not ready and self._paired:
                logger.warning("Lost connection to Roon Core")
                self._paired = False
                self._zone_socket = None
                self.emit_unpaired()
            if ready and socket is not self._zone_socket:
                await self._subscribe_zones(socket)
            await asyncio.sleep(POLL_INTERVAL)

    @staticmethod
    def _session_ready(api) -> bool:
        # roonapi keeps ready=True until a replacement socket reconnects
        socket = api._roonsocket
        return bool(api.ready) and socket is not None and not socket.failed_state

    async def _connect(self):
        host, port = self.host, self.port
        if not host:
            logger.info("Discovering Roon Core (timeout %ss)...", self.discovery_timeout)
            host, port = await asyncio.wait_for(
                self._loop.run_in_executor(self._executor, self._discover),
                timeout=self.discovery_timeout)

        logger.info("Connecting to Roon Core at %s:%s", host, port)
        token = self._load_token()
        self._api = await self._loop.run_in_executor(
            self._executor, self._open_api, host, port, token)
        self.emit_connected()
        if not token:
            logger.info("Waiting for authorisation: enable 'Roon CLI' in "
                        "Roon Settings > Extensions")

    def _on_ready(self):
        api = self._api
        self._paired = True
        self._save_token(api.token)
        core = CoreInfo(name=api.core_name or "Roon Core", id=api.core_id or "")
        logger.info("Paired with Roon Core: %s (%s)", core.name, core.id)
        self.emit_paired(core)

    async def _subscribe_zones(self, socket):
        """Subscribe to transport zones on *socket*; the first reply is the snapshot."""
        self._zone_socket = socket
        callback = functools.partial(self._on_zones_message, socket)
        await self._loop.run_in_executor(
            self._executor, socket.subscribe, SERVICE_TRANSPORT, "zones", callback)
        logger.debug("Subscribed to Roon zones")

    # ── Runs in executor threads ──

    @staticmethod
    def _discover() -> tuple[str, int]:
        discovery = RoonDiscovery(None)
        try:
            host, port = discovery.first()
        finally:
            discovery.stop()
        if not host:
            raise PlayerError("No Roon Core found on the network")
        return host, port

    @staticmethod
    def _open_api(host, port, token) -> RoonApi:
        return RoonApi(APP_INFO, token, host, port, blocking_init=False)

    # ── Token file ──

    def _load_token(self) -> str | None:
        try:
            with open(self.token_file) as f:
                return f.read().strip() or None
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read token file %s: %s", self.token_file, e)
            return None

    def _save_token(self, token: str | None):
        if not token or token == self._load_token():
            return
        try:
            os.makedirs(os.path.dirname(self.token_file), exist_ok=True)
            with open(self.token_file, "w") as f:
                f.write(token)
            os.chmod(self.token_file, 0o600)
            logger.info("Saved Roon token to %s", self.token_file)
        except OSError as e:
            logger.warning("Cannot save token to %s: %s", self.token_file, e)

    # ── Zone messages (roonapi socket thread) ──

    def _on_zones_message(self, socket, body):
        fragment = self._zone_fragment(body)
        if fragment and self._loop:
            self._loop.call_soon_threadsafe(self._deliver, socket, fragment)

    @staticmethod
    def _zone_fragment(body) -> dict | None:
        """Pick the zone keys out of one subscription message."""
        if not isinstance(body, dict):
            return None
        fragment = {key: body[key] for key in ZONE_KEYS if key in body}
        return fragment or None

    def _deliver(self, socket, fragment: dict):
        # Fragments that race an unpair or a reconnect would resurrect stale zones
        if self._paired and socket is self._zone_socket:
            self.emit_zones(fragment)

    # ── Commands ──

    async def _run(self, method: str, *args, **kwargs):
        api = self._api
        if api is None or not self._paired:
            raise PlayerError("Not connected to Roon Core")
        call = functools.partial(getattr(api, method), *args, **kwargs)
        result = await self._loop.run_in_executor(self._executor, call)
        return self._check_reply(method, result)

    @staticmethod
    def _check_reply(method: str, result):
        if isinstance(result, dict):
            return result
        if result is None:
            raise PlayerError("No reply from Roon Core")
        if isinstance(result, str) and result.endswith("Success"):
            return result
        logger.debug("Roon Core rejected %s: %r", method, result)
        reason = str(result).rsplit(" ", 1)[-1] or "error"
        raise PlayerError(f"Roon Core error: {reason}")

    async def control(self, zone_id, action):
        if action not in TRANSPORT_ACTIONS:
            raise PlayerError(f"Unknown transport action: {action}")
        await self._run("playback_control", zone_id, action)

    async def seek(self, zone_id, how, seconds):
        await self._run("seek", zone_id, seconds, how)

    async def change_volume(self, output_id, how, value):
        output = self._api.outputs.get(output_id) if self._api is not None else None
        if output is not None and "volume" not in output:
            raise PlayerError(f"Output {output_id} has fixed volume")
        await self._run("change_volume_raw", output_id, value, how)

    async def mute(self, output_id, how):
        await self._run("mute", output_id, how == "mute")

    async def change_settings(self, zone_id, settings):
        # roonapi only wraps shuffle and loop on/off; auto_radio and loop_one
        # need the raw transport request
        await self._run("_request", SERVICE_TRANSPORT + "/change_settings",
                        {"zone_or_output_id": zone_id, **settings})

    async def browse(self, opts):
        result = await self._run("browse_browse", opts)
        if not isinstance(result, dict):
            raise PlayerError("Browse request failed")
        return result

    async def load(self, opts):
        result = await self._run("browse_load", opts)
        if not isinstance(result, dict):
            raise PlayerError("Browse load failed")
        return result

    async def get_image(self, image_key, scale, width, height, fmt):
        if self._api is None or not self._paired:
            raise PlayerError("Not connected to Roon Core")
        url = self._api.get_image(image_key, scale, width, height)
        if not url:
            raise PlayerError(f"No image URL for {image_key}")
        return await self.fetch_image(f"{url}&format={fmt}",
                                      (image_key, scale, width, height, fmt))

    async def standby(self, output_id, control_key=None):
        await self._run("standby", output_id, control_key)

    async def group_outputs(self, output_ids):
        await self._run("group_outputs", output_ids)

    async def ungroup_outputs(self, output_ids):
        await self._run("ungroup_outputs", output_ids)

    async def transfer_zone(self, from_zone_id, to_zone_id):
        await self._run("transfer_zone", from_zone_id, to_zone_id)
