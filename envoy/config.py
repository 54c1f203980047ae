"""
Runtime configuration for the envoy client.

Everything is read from the environment once, at import time:

    ENVOY_SOCKET    - broker endpoint; a leading "@" selects the abstract
                      namespace (default: @/vodik/envoy)
    ENVOY_DEBUG=1   - enable debug logging to stderr
    ENVOY_TIMEOUT   - optional socket timeout in seconds (default: block)
    ENVOY_SSH_ADD   - override the ssh-add binary path
"""

import os
import shutil
from pathlib import Path
from typing import Optional


def _detect_ssh_add() -> str:
    """Detect the ssh-add binary used for adding and listing keys."""
    found = shutil.which("ssh-add")
    if found:
        return found
    candidates = [
        "/usr/bin/ssh-add",
        "/usr/local/bin/ssh-add",
        "/opt/homebrew/bin/ssh-add",
    ]
    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return "/usr/bin/ssh-add"


def _parse_timeout(value: str) -> Optional[float]:
    if not value:
        return None
    try:
        timeout = float(value)
    except ValueError:
        return None
    return timeout if timeout > 0 else None


VERSION = "1.0.0"

DEFAULT_SOCKET = "@/vodik/envoy"

ENVOY_SOCKET = os.environ.get("ENVOY_SOCKET") or DEFAULT_SOCKET
DEBUG = os.environ.get("ENVOY_DEBUG", "").lower() in ("1", "true", "yes")
TIMEOUT = _parse_timeout(os.environ.get("ENVOY_TIMEOUT", ""))
SSH_ADD_BIN = os.environ.get("ENVOY_SSH_ADD") or _detect_ssh_add()
LOG_PATH = Path.home() / ".cache" / "envoy" / "envoy.log"
