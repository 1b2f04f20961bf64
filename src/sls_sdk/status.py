"""Installed-toolchain state."""

from __future__ import annotations

import enum
import os
from pathlib import Path

from sls_sdk.credentials import CREDENTIALS_FILE
from sls_sdk.errors import (
    ServerlessNeedsUpgradeError,
    ServerlessNotConnectedError,
    ServerlessNotInstalledError,
    ServerlessStatusError,
)

# First part: bundled CLI version. Second part: bridge version.
MIN_SERVERLESS_VERSION = "4.1.0-1.3.0"
MIN_SERVERLESS_VERSION_ENV_VAR = "minServerlessVersion"
VERSION_FILE = "version"
UNVERSIONED = "0"


class ServerlessStatus(enum.Enum):
    ABSENT = "absent"
    STALE = "stale"
    INSTALLED_DISCONNECTED = "installed-disconnected"
    READY = "ready"

    def to_error(self) -> ServerlessStatusError | None:
        if self is ServerlessStatus.ABSENT:
            return ServerlessNotInstalledError()
        if self is ServerlessStatus.STALE:
            return ServerlessNeedsUpgradeError()
        if self is ServerlessStatus.INSTALLED_DISCONNECTED:
            return ServerlessNotConnectedError()
        return None


def get_min_serverless_version() -> str:
    return os.getenv(MIN_SERVERLESS_VERSION_ENV_VAR) or MIN_SERVERLESS_VERSION


def get_current_serverless_version(serverless_dir: str | Path) -> str:
    """Installed toolchain version, or "0" for installs that predate the marker."""
    try:
        return (Path(serverless_dir) / VERSION_FILE).read_text(encoding="utf-8").strip()
    except OSError:
        return UNVERSIONED


def serverless_uptodate(serverless_dir: str | Path) -> bool:
    return get_current_serverless_version(serverless_dir) >= get_min_serverless_version()


def is_serverless_connected(creds_dir: str | Path) -> bool:
    return (Path(creds_dir) / CREDENTIALS_FILE).exists()


def derive_status(*, installed: bool, up_to_date: bool, connected: bool) -> ServerlessStatus:
    if not installed:
        return ServerlessStatus.ABSENT
    if not up_to_date:
        return ServerlessStatus.STALE
    if not connected:
        return ServerlessStatus.INSTALLED_DISCONNECTED
    return ServerlessStatus.READY


def check_serverless_status(serverless_dir: str | Path, creds_dir: str | Path) -> ServerlessStatus:
    installed = Path(serverless_dir).exists()
    up_to_date = installed and serverless_uptodate(serverless_dir)
    connected = up_to_date and is_serverless_connected(creds_dir)
    return derive_status(installed=installed, up_to_date=up_to_date, connected=connected)


__all__ = [
    "MIN_SERVERLESS_VERSION",
    "ServerlessStatus",
    "check_serverless_status",
    "derive_status",
    "get_current_serverless_version",
    "get_min_serverless_version",
    "serverless_uptodate",
]
