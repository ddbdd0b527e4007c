# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Album-art HTTP proxy.

Serves core images to browsers and status bars that cannot speak the IPC
protocol:

    GET /album-art/{imageKey}?size=300&format=jpeg|png&scale=fit|fill|stretch

  200  image bytes, cached by clients for a day
  400  bad query parameters
  404  image could not be fetched
  503  daemon not connected / paired with the core

Bound to 127.0.0.1 only.
"""

import logging

from aiohttp import web

from .lib.protocol import ErrorCode, IPCError
from .lib.request_router import DEFAULT_IMAGE_SIZE, RequestRouter

logger = logging.getLogger(__name__)

ROUTER_KEY = web.AppKey("router", RequestRouter)

CACHE_CONTROL = "public, max-age=86400"
NOT_READY_CODES = (ErrorCode.NOT_CONNECTED, ErrorCode.NOT_PAIRED)


def _cors(resp):
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        return _cors(web.Response(status=204))
    try:
        resp = await handler(request)
    except web.HTTPException as e:
        _cors(e)
        raise
    return _cors(resp)


async def handle_album_art(request: web.Request) -> web.Response:
    router = request.app[ROUTER_KEY]
    image_key = request.match_info["image_key"]

    try:
        size = int(request.query.get("size", DEFAULT_IMAGE_SIZE))
    except ValueError:
        return web.Response(status=400, text="size must be an integer")
    fmt = "image/png" if request.query.get("format") == "png" else "image/jpeg"
    scale = request.query.get("scale", "fit")

    try:
        data, content_type = await router.get_image(image_key, scale, size, size, fmt)
    except IPCError as e:
        if e.code in NOT_READY_CODES:
            return web.Response(status=503, text=e.message)
        if e.code == ErrorCode.INVALID_PARAMS:
            return web.Response(status=400, text=e.message)
        logger.debug("Album art %s not available: %s", image_key, e.message)
        return web.Response(status=404, text="Image not found")

    return web.Response(body=data, content_type=content_type,
                        headers={"Cache-Control": CACHE_CONTROL})


def create_app(router: RequestRouter) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[ROUTER_KEY] = router
    app.router.add_get("/album-art/{image_key}", handle_album_art)
    return app


class AlbumArtServer:
    """Runs the proxy app on the daemon's event loop."""

    def __init__(self, router: RequestRouter, port: int, host: str = "127.0.0.1"):
        self.app = create_app(router)
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self):
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Album art server on http://%s:%d/album-art/", self.host, self.port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
