"""
Gatekeeper configuration. Defaults come from the environment; CLI flags override them.
No key material here: trusted public keys live in the services TOML file.
"""
import os
import re
from datetime import timedelta

VERSION = "0.2.0"

# Services TOML (ids, allowed path prefixes, trusted public keys)
CONF_PATH = os.environ.get("GATEKEEPER_CONF", "services.toml")

# Maximum age of a token's iat, independent of its exp
JWT_FRESHNESS = os.environ.get("GATEKEEPER_JWT_FRESHNESS", "1h")

# Verification cache: max entries (0 disables) and how many oldest entries to drop when full
CACHE_SIZE = int(os.environ.get("GATEKEEPER_CACHE_SIZE", "1000"))
PRUNE_SIZE = int(os.environ.get("GATEKEEPER_PRUNE_SIZE", "100"))

# Path of the auth_request endpoint, without leading slash
AUTH_ENDPOINT = os.environ.get("GATEKEEPER_AUTH_ENDPOINT", "auth").strip("/")

HOST = os.environ.get("GATEKEEPER_HOST", "127.0.0.1")
PORT = int(os.environ.get("GATEKEEPER_PORT", "8080"))

# Header carrying the resolved service id back to the proxy
SERVICE_HEADER = "X-Gatekeeper-Service"
# Header the proxy uses to forward the original request URI
ORIGINAL_URI_HEADER = "X-Original-URI"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str | int | float) -> timedelta:
    """
    Parse seconds ("3600", 3600) or unit strings ("90s", "15m", "1h30m").
    Raises ValueError for anything else or a negative value.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for m in _DURATION_PART.finditer(text):
                if m.start() != pos:
                    break
                seconds += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
                pos = m.end()
            if not text or pos != len(text):
                raise ValueError(f"Invalid duration: {value!r}")
    if seconds < 0:
        raise ValueError(f"Duration must not be negative: {value!r}")
    return timedelta(seconds=seconds)
