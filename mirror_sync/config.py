"""Configuration management for Mirror Watcher.

Stores and retrieves daemon settings from a JSON config file
in the platform-appropriate application data directory.
"""

import copy
import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from mirror_sync.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from mirror_sync.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

# Verification policies
VERIFY_HASH = "hash"
VERIFY_SIZE = "size"

# Files the OS drops into folders on its own; safe to delete when pruning
DEFAULT_TRASH_NAMES = [".DS_Store", "._.DS_Store", "Thumbs.db", "desktop.ini"]

# Volume-control and recycling folders that are never mirrored
DEFAULT_IGNORED_DIRS = [
    "$RECYCLE.BIN",
    "System Volume Information",
    ".Trashes",
    ".Spotlight-V100",
    ".fseventsd",
    ".TemporaryItems",
]

DEFAULT_CONFIG: dict[str, Any] = {
    # ---- retry ----
    "retry_delay_seconds": 5,  # seconds between retries of a busy/locked file
    "retry_max_attempts": 0,  # 0 = retry forever
    "retry_warn_every": 10,  # log every Nth retry at WARNING level
    # ---- timing ----
    "settle_delay_seconds": 10,  # wait after a copy before verifying it
    "scan_delay_seconds": 5,  # wait before listing a newly discovered folder
    "debounce_timeout_seconds": 30,  # repeat events inside this window are dropped
    "debounce_sweep_seconds": 10,  # how often stale history entries are evicted
    "purge_delay_seconds": 5,  # wait before re-reading a folder for pruning
    # ---- verification ----
    "verify_policy": VERIFY_HASH,  # hash | size
    "hash_algorithm": "sha256",
    "mismatch_recopy_attempts": 1,  # re-copies after a failed verification
    # ---- filtering ----
    "trash_names": DEFAULT_TRASH_NAMES,
    "ignored_dirs": DEFAULT_IGNORED_DIRS,
    # ---- logging ----
    "log_level": "INFO",
    "log_to_file": True,
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                # Merge stored values over defaults so new keys get defaults
                self._data = {**copy.deepcopy(DEFAULT_CONFIG), **stored}
                self._validate()
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, OSError, TypeError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = copy.deepcopy(DEFAULT_CONFIG)
        else:
            self._data = copy.deepcopy(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    def _validate(self) -> None:
        """Run every stored value through its setter; unusable values revert to defaults."""
        for key, prop in _PROPERTIES.items():
            value = self._data[key]
            try:
                setattr(self, prop, value)
            except (TypeError, ValueError, AttributeError):
                logger.warning("Invalid value %r for %s; using default.", value, key)
                setattr(self, prop, copy.deepcopy(DEFAULT_CONFIG[key]))

    # ---- retry ----

    @property
    def retry_delay(self) -> float:
        """Return seconds between retry attempts."""
        return float(self._data.get("retry_delay_seconds", 5))

    @retry_delay.setter
    def retry_delay(self, value: float) -> None:
        """Set seconds between retry attempts (never negative)."""
        self._data["retry_delay_seconds"] = max(0.0, float(value))

    @property
    def retry_max_attempts(self) -> int:
        """Return the retry ceiling (0 = unbounded)."""
        return int(self._data.get("retry_max_attempts", 0))

    @retry_max_attempts.setter
    def retry_max_attempts(self, value: int) -> None:
        self._data["retry_max_attempts"] = max(0, int(value))

    @property
    def retry_warn_every(self) -> int:
        return int(self._data.get("retry_warn_every", 10))

    @retry_warn_every.setter
    def retry_warn_every(self, value: int) -> None:
        self._data["retry_warn_every"] = max(1, int(value))

    # ---- timing ----

    @property
    def settle_delay(self) -> float:
        """Return the post-copy settle window in seconds."""
        return float(self._data.get("settle_delay_seconds", 10))

    @settle_delay.setter
    def settle_delay(self, value: float) -> None:
        """Set the post-copy settle window (minimum 0 s)."""
        self._data["settle_delay_seconds"] = max(0.0, float(value))

    @property
    def scan_delay(self) -> float:
        """Return the wait before a newly discovered folder is listed."""
        return float(self._data.get("scan_delay_seconds", 5))

    @scan_delay.setter
    def scan_delay(self, value: float) -> None:
        self._data["scan_delay_seconds"] = max(0.0, float(value))

    @property
    def debounce_timeout(self) -> float:
        """Return the duplicate-event suppression window in seconds."""
        return float(self._data.get("debounce_timeout_seconds", 30))

    @debounce_timeout.setter
    def debounce_timeout(self, value: float) -> None:
        self._data["debounce_timeout_seconds"] = max(0.0, float(value))

    @property
    def debounce_sweep(self) -> float:
        """Return the interval between history sweeps."""
        return float(self._data.get("debounce_sweep_seconds", 10))

    @debounce_sweep.setter
    def debounce_sweep(self, value: float) -> None:
        """Set the sweep interval (minimum 0.1 s)."""
        self._data["debounce_sweep_seconds"] = max(0.1, float(value))

    @property
    def purge_delay(self) -> float:
        """Return the delay before a folder is re-read for pruning."""
        return float(self._data.get("purge_delay_seconds", 5))

    @purge_delay.setter
    def purge_delay(self, value: float) -> None:
        self._data["purge_delay_seconds"] = max(0.0, float(value))

    # ---- verification ----

    @property
    def verify_policy(self) -> str:
        """Return the verification policy ('hash' or 'size')."""
        return self._data.get("verify_policy", VERIFY_HASH)

    @verify_policy.setter
    def verify_policy(self, value: str) -> None:
        """Set the verification policy, falling back to hashing."""
        if value not in (VERIFY_HASH, VERIFY_SIZE):
            value = VERIFY_HASH
        self._data["verify_policy"] = value

    @property
    def hash_algorithm(self) -> str:
        return self._data.get("hash_algorithm", "sha256")

    @hash_algorithm.setter
    def hash_algorithm(self, value: str) -> None:
        """Set the ``hashlib`` algorithm, falling back to sha256 if unavailable."""
        name = value.strip().lower()
        # shake_* digests need a length and cannot be compared as plain hexdigests
        if name not in hashlib.algorithms_available or name.startswith("shake_"):
            if name:
                logger.warning("Unknown hash algorithm %r; using sha256.", value)
            name = "sha256"
        self._data["hash_algorithm"] = name

    @property
    def mismatch_recopy_attempts(self) -> int:
        """Return how many times a mismatched copy is redone before giving up."""
        return int(self._data.get("mismatch_recopy_attempts", 1))

    @mismatch_recopy_attempts.setter
    def mismatch_recopy_attempts(self, value: int) -> None:
        self._data["mismatch_recopy_attempts"] = max(0, int(value))

    # ---- filtering ----

    @property
    def trash_names(self) -> list[str]:
        """Return filenames that may be deleted when pruning a folder."""
        return list(self._data.get("trash_names", DEFAULT_TRASH_NAMES))

    @trash_names.setter
    def trash_names(self, value: list[str]) -> None:
        if isinstance(value, str):
            raise TypeError("trash_names must be a list of names")
        self._data["trash_names"] = [n.strip() for n in value if n.strip()]

    @property
    def ignored_dirs(self) -> list[str]:
        """Return folder names that are never scanned or watched."""
        return list(self._data.get("ignored_dirs", DEFAULT_IGNORED_DIRS))

    @ignored_dirs.setter
    def ignored_dirs(self, value: list[str]) -> None:
        if isinstance(value, str):
            raise TypeError("ignored_dirs must be a list of names")
        self._data["ignored_dirs"] = [n.strip() for n in value if n.strip()]

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name, falling back to INFO."""
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "INFO"
        self._data["log_level"] = level

    @property
    def log_to_file(self) -> bool:
        """Return whether a rotating log file is written."""
        return bool(self._data.get("log_to_file", True))

    @log_to_file.setter
    def log_to_file(self, value: bool) -> None:
        self._data["log_to_file"] = bool(value)

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))


# Stored key -> validating property, applied to every loaded file
_PROPERTIES = {
    "retry_delay_seconds": "retry_delay",
    "retry_max_attempts": "retry_max_attempts",
    "retry_warn_every": "retry_warn_every",
    "settle_delay_seconds": "settle_delay",
    "scan_delay_seconds": "scan_delay",
    "debounce_timeout_seconds": "debounce_timeout",
    "debounce_sweep_seconds": "debounce_sweep",
    "purge_delay_seconds": "purge_delay",
    "verify_policy": "verify_policy",
    "hash_algorithm": "hash_algorithm",
    "mismatch_recopy_attempts": "mismatch_recopy_attempts",
    "trash_names": "trash_names",
    "ignored_dirs": "ignored_dirs",
    "log_level": "log_level",
    "log_to_file": "log_to_file",
    "max_log_size_mb": "max_log_size_mb",
    "log_backup_count": "log_backup_count",
}
