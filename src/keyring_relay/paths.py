"""Shared filesystem path helpers for keyring-relay."""
from __future__ import annotations

import sys
from pathlib import Path

from platformdirs import PlatformDirs

_APP_NAME = "Keyring Relay"
_LINUX_APP_NAME = "keyring-relay"


def runtime_config_dir() -> Path:
    """Return the per-user runtime configuration directory."""
    if sys.platform in ("win32", "darwin"):
        dirs = PlatformDirs(appname=_APP_NAME, appauthor=None, roaming=True)
    else:
        dirs = PlatformDirs(appname=_LINUX_APP_NAME, appauthor=None, roaming=False)
    return Path(dirs.user_config_path)


def local_config_path() -> Path:
    """Return the working-directory config location."""
    return Path.cwd() / ".keyring-relay" / "config.yaml"
