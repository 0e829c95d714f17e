"""Library settings and config persistence for rawusb.

Config is stored at ~/.config/rawusb/config.json (XDG-compliant) and may be
overridden per process through environment variables.

Usage:
    from rawusb.conf import settings

    settings.read_timeout_ms      # default read timeout (0 = block forever)
    settings.write_timeout_ms     # default write timeout (0 = block forever)
    settings.auto_detach_policy   # "warn" or "error"
    settings.strict_endpoints     # raise on duplicate same-direction endpoints

    # Low-level config access
    from rawusb.conf import load_config, save_config
"""
from __future__ import annotations

import json
import logging
import os
from typing import Optional

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'rawusb')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')

# Environment overrides
ENV_READ_TIMEOUT = 'RAWUSB_READ_TIMEOUT'
ENV_WRITE_TIMEOUT = 'RAWUSB_WRITE_TIMEOUT'
ENV_AUTO_DETACH = 'RAWUSB_AUTO_DETACH'
ENV_STRICT_ENDPOINTS = 'RAWUSB_STRICT_ENDPOINTS'

AUTO_DETACH_POLICIES = ('warn', 'error')

DEFAULT_TIMEOUT_MS = 0  # 0 = no timeout
DEFAULT_AUTO_DETACH_POLICY = 'warn'


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Value parsing
# =========================================================================

def _parse_timeout(name: str, value, default: int = DEFAULT_TIMEOUT_MS) -> int:
    """Timeout in milliseconds; negative or non-numeric values fall back."""
    if value is None or value == '':
        return default
    try:
        ms = int(value)
    except (TypeError, ValueError):
        log.warning("Ignoring invalid %s=%r (expected milliseconds)", name, value)
        return default
    if ms < 0:
        log.warning("Ignoring negative %s=%d", name, ms)
        return default
    return ms


def _parse_policy(value) -> str:
    if value is None or value == '':
        return DEFAULT_AUTO_DETACH_POLICY
    policy = str(value).strip().lower()
    if policy not in AUTO_DETACH_POLICIES:
        log.warning("Ignoring unknown auto-detach policy %r (expected one of %s)",
                    value, ", ".join(AUTO_DETACH_POLICIES))
        return DEFAULT_AUTO_DETACH_POLICY
    return policy


def _parse_bool(value, default: bool = False) -> bool:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    log.warning("Ignoring invalid boolean %r", value)
    return default


def _lookup(config: dict, env_name: str, key: str):
    """Environment value if set and non-empty, else the config value."""
    value = os.environ.get(env_name)
    if value is None or value == '':
        return config.get(key)
    return value


# =========================================================================
# Settings
# =========================================================================

class Settings:
    """Library-wide settings.

    Values resolve in order: environment variable, config file, default.
    ``set_*()`` methods update the in-memory value and optionally persist it.
    """

    def __init__(self, config: Optional[dict] = None) -> None:
        config = load_config() if config is None else config

        self.read_timeout_ms: int = _parse_timeout(
            'read_timeout_ms', _lookup(config, ENV_READ_TIMEOUT, 'read_timeout_ms'))
        self.write_timeout_ms: int = _parse_timeout(
            'write_timeout_ms', _lookup(config, ENV_WRITE_TIMEOUT, 'write_timeout_ms'))
        self.auto_detach_policy: str = _parse_policy(
            _lookup(config, ENV_AUTO_DETACH, 'auto_detach_policy'))
        self.strict_endpoints: bool = _parse_bool(
            _lookup(config, ENV_STRICT_ENDPOINTS, 'strict_endpoints'))

    def set_timeouts(self, read_ms: int, write_ms: int, persist: bool = True) -> None:
        """Update default transfer timeouts."""
        self.read_timeout_ms = _parse_timeout('read_timeout_ms', read_ms)
        self.write_timeout_ms = _parse_timeout('write_timeout_ms', write_ms)
        if persist:
            config = load_config()
            config['read_timeout_ms'] = self.read_timeout_ms
            config['write_timeout_ms'] = self.write_timeout_ms
            save_config(config)

    def set_auto_detach_policy(self, policy: str, persist: bool = True) -> None:
        self.auto_detach_policy = _parse_policy(policy)
        if persist:
            config = load_config()
            config['auto_detach_policy'] = self.auto_detach_policy
            save_config(config)

    def __repr__(self) -> str:
        return (f"Settings(read_timeout_ms={self.read_timeout_ms}, "
                f"write_timeout_ms={self.write_timeout_ms}, "
                f"auto_detach_policy={self.auto_detach_policy!r}, "
                f"strict_endpoints={self.strict_endpoints})")


# Module-level singleton, import and use directly
settings = Settings()
