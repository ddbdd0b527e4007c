# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
IPC wire protocol: newline-delimited UTF-8 JSON over a unix socket.

    request   {"id": "...", "method": "...", "params": {...}}
    response  {"id": "...", "result": ...}
              {"id": "...", "error": {"code": 3, "message": "..."}}
    event     {"event": "volume", "data": {...}, "zoneId": "...", "timestamp": 1700000000000}

One JSON value per line.  json.dumps escapes control characters inside
strings, so an encoded message never contains a raw newline.
"""

import json
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    NOT_CONNECTED = 1
    NOT_PAIRED = 2
    ZONE_NOT_FOUND = 3
    OUTPUT_NOT_FOUND = 4
    INVALID_PARAMS = 5
    EXTERNAL_SERVICE_ERROR = 6
    BROWSE_ERROR = 7
    IMAGE_NOT_FOUND = 8
    UNKNOWN = 99


# Subscribable event types
POSITION = "position"
STATE = "state"
TRACK = "track"
VOLUME = "volume"
SETTINGS = "settings"
ZONES = "zones"
CONNECTION = "connection"

EVENT_TYPES = frozenset({POSITION, STATE, TRACK, VOLUME, SETTINGS, ZONES, CONNECTION})

# Placeholder ids for error responses to lines we could not attribute
INVALID_ID = "invalid"
UNKNOWN_ID = "unknown"


class IPCError(Exception):
    """An error that is reported to the IPC client with a stable code."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": int(self.code), "message": self.message}

    def __repr__(self) -> str:
        return f"IPCError({self.code.name}, {self.message!r})"


class ProtocolError(IPCError):
    """A line that is not a well-formed request.

    ``request_id`` is the best-effort id to address the error response to.
    """

    def __init__(self, request_id: str | int, message: str):
        super().__init__(ErrorCode.INVALID_PARAMS, message)
        self.request_id = request_id


@dataclass(frozen=True)
class Request:
    """A parsed IPC request.

    Attributes:
        id: Client-chosen identifier echoed in the response.
        method: Method name to call.
        params: Method parameters (empty dict when omitted).
    """

    id: str | int
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_line(cls, line: str) -> "Request":
        """Parse one line into a Request.

        Raises:
            ProtocolError: If the line is not JSON or lacks a usable id/method.
        """
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            raise ProtocolError(INVALID_ID, "Invalid JSON") from None
        if not isinstance(data, dict):
            raise ProtocolError(INVALID_ID, "Request must be a JSON object")

        request_id = data.get("id")
        if isinstance(request_id, bool) or not isinstance(request_id, (str, int)) or request_id == "":
            request_id = None
        method = data.get("method")
        if request_id is None or not isinstance(method, str) or not method:
            raise ProtocolError(request_id if request_id is not None else UNKNOWN_ID,
                                "Missing id or method")

        params = data.get("params")
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            raise ProtocolError(request_id, "params must be an object")
        return cls(id=request_id, method=method, params=params)


def encode(message: dict) -> bytes:
    """Serialize one message as a single newline-terminated line."""
    return (json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def make_response(request_id: str | int, result: Any) -> dict:
    return {"id": request_id, "result": result}


def make_error(request_id: str | int, code: ErrorCode, message: str) -> dict:
    return {"id": request_id, "error": {"code": int(code), "message": message}}


def make_event(event: str, data: Any, zone_id: str | None = None) -> dict:
    message = {"event": event, "data": data}
    if zone_id is not None:
        message["zoneId"] = zone_id
    message["timestamp"] = int(time.time() * 1000)
    return message
