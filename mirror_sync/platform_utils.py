"""
Cross-platform utilities for Mirror Watcher.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.

Also classifies the ``OSError`` variants that mean "try again later"
(a file still held open by its writer, a dropped connection to a
network-mapped volume), since their errno / winerror values differ
between platforms.
"""

from __future__ import annotations

import errno
import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\MirrorWatcher``
    - macOS   : ``~/Library/Application Support/MirrorWatcher``
    - Linux   : ``$XDG_CONFIG_HOME/MirrorWatcher`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / "MirrorWatcher"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "mirror_watcher.log"


# ---- transient error classification ------------------------------------

# Windows system error codes
_ERROR_SHARING_VIOLATION = 32
_ERROR_LOCK_VIOLATION = 33
_ERROR_UNEXP_NET_ERR = 59
_ERROR_NETNAME_DELETED = 64

_LOCKED_ERRNOS = frozenset({errno.EBUSY, getattr(errno, "ETXTBSY", errno.EBUSY)})
_LOCKED_WINERRORS = frozenset({_ERROR_SHARING_VIOLATION, _ERROR_LOCK_VIOLATION})
_RESET_ERRNOS = frozenset({errno.ECONNRESET, errno.ENETRESET})
_RESET_WINERRORS = frozenset({_ERROR_NETNAME_DELETED, _ERROR_UNEXP_NET_ERR})


def is_locked_error(exc: BaseException) -> bool:
    """Return True if *exc* means the file is held open or locked by another writer."""
    if not isinstance(exc, OSError):
        return False
    if getattr(exc, "winerror", None) in _LOCKED_WINERRORS:
        return True
    return exc.errno in _LOCKED_ERRNOS


def is_connection_reset(exc: BaseException) -> bool:
    """Return True if *exc* is a dropped connection to a network-mapped volume."""
    if isinstance(exc, ConnectionResetError):
        return True
    if not isinstance(exc, OSError):
        return False
    if getattr(exc, "winerror", None) in _RESET_WINERRORS:
        return True
    return exc.errno in _RESET_ERRNOS


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth retrying indefinitely."""
    return is_locked_error(exc) or is_connection_reset(exc)
