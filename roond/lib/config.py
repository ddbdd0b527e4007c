# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Shared configuration loader for the roond daemon.

Loads a single JSON config file.  Search order:
  1. $ROOND_CONFIG                      (explicit override)
  2. ~/.config/roon-cli/config.json     (per-user, shared with the CLI)
  3. /etc/roon-cli/config.json          (system-wide)
  4. config.json                        (CWD — handy for local dev)

Usage:
    from roond.lib.config import cfg

    socket_path = cfg("daemon", "socket_path", default=DEFAULT_SOCKET_PATH)
    core_host   = cfg("core", "host")
    core        = cfg("core")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/tmp/roon-cli.sock"
DEFAULT_HTTP_PORT = 9331
DEFAULT_CORE_PORT = 9330
CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".config", "roon-cli")
DEFAULT_TOKEN_FILE = os.path.join(CONFIG_DIR, "token")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_config: dict | None = None


def _search_paths() -> list[str]:
    paths = []
    override = os.environ.get("ROOND_CONFIG")
    if override:
        paths.append(override)
    paths += [
        os.path.join(CONFIG_DIR, "config.json"),
        "/etc/roon-cli/config.json",
        "config.json",
    ]
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about suspicious config values."""
    daemon = config.get("daemon") or {}
    core = config.get("core") or {}
    for section, key, value in (("daemon", "http_port", daemon.get("http_port")),
                                ("core", "port", core.get("port"))):
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            logger.warning("Config %s: %s.%s should be an integer, got %r",
                           path, section, key, value)
    level = daemon.get("log_level")
    if level is not None and str(level).upper() not in _LOG_LEVELS:
        logger.warning("Config %s: unknown daemon.log_level '%s'", path, level)
    if core.get("port") and not core.get("host"):
        logger.warning("Config %s: core.port set without core.host — discovery will be used", path)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                loaded = json.load(f)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue
        if not isinstance(loaded, dict):
            logger.error("Config %s: top level must be an object", path)
            continue
        _config = loaded
        logger.info("Config loaded from %s", path)
        _validate(_config, path)
        return _config

    logger.warning("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("core")                          → config["core"]
    cfg("core", "host")                  → config["core"]["host"]
    cfg("daemon", "http_port", default=9331) → config["daemon"]["http_port"] or 9331
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        found = val.get(key)
        return found if found is not None else default
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
