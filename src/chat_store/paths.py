"""OS-specific storage locations for the chat history.

Layout under the per-user application-data root::

    <root>/<Vendor>/<App>/
      settings.json
      ChatLogs/
        chat_history.json              # active file
        chat_history.<YYYYMMDD>[.N].json  # archives

Resolvers are pure: they compute paths and never touch the filesystem.
Directory creation is :func:`ensure_dirs`.
"""
from __future__ import annotations

import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import aiofiles.os

DEFAULT_VENDOR = "Letterblack"
DEFAULT_APP = "AEChatExtension"

LOGS_DIRNAME = "ChatLogs"
ACTIVE_FILENAME = "chat_history.json"
SETTINGS_FILENAME = "settings.json"


@dataclass(frozen=True)
class StoragePaths:
    base: Path
    logs_dir: Path
    active_file: Path
    settings_file: Path


class PathResolver(ABC):
    """Maps an OS family to its per-user application-data root."""

    def __init__(
        self,
        vendor: str = DEFAULT_VENDOR,
        app: str = DEFAULT_APP,
        *,
        home: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.vendor = vendor
        self.app = app
        self.home = Path(home) if home is not None else Path.home()
        self.environ = os.environ if environ is None else environ

    @abstractmethod
    def app_data_root(self) -> Path:
        ...

    def resolve(self) -> StoragePaths:
        base = self.app_data_root() / self.vendor / self.app
        logs_dir = base / LOGS_DIRNAME
        return StoragePaths(
            base=base,
            logs_dir=logs_dir,
            active_file=logs_dir / ACTIVE_FILENAME,
            settings_file=base / SETTINGS_FILENAME,
        )


class WindowsPathResolver(PathResolver):
    """Roaming app data: %APPDATA% or ~/AppData/Roaming."""

    def app_data_root(self) -> Path:
        appdata = self.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
        return self.home / "AppData" / "Roaming"


class MacPathResolver(PathResolver):
    def app_data_root(self) -> Path:
        return self.home / "Library" / "Application Support"


class LinuxPathResolver(PathResolver):
    """XDG config home, falling back to ~/.config."""

    def app_data_root(self) -> Path:
        xdg = self.environ.get("XDG_CONFIG_HOME")
        if xdg:
            return Path(xdg)
        return self.home / ".config"


class FixedPathResolver(PathResolver):
    """Uses a caller-chosen directory as the application-data root."""

    def __init__(self, root: str | Path, vendor: str = DEFAULT_VENDOR, app: str = DEFAULT_APP) -> None:
        super().__init__(vendor, app, home=Path(root), environ={})
        self.root = Path(root)

    def app_data_root(self) -> Path:
        return self.root


def resolver_for_platform(
    platform: Optional[str] = None,
    vendor: str = DEFAULT_VENDOR,
    app: str = DEFAULT_APP,
    **kwargs,
) -> PathResolver:
    """Pick the resolver for ``platform`` (defaults to ``sys.platform``)."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        cls = WindowsPathResolver
    elif platform == "darwin":
        cls = MacPathResolver
    else:
        cls = LinuxPathResolver
    return cls(vendor, app, **kwargs)


async def ensure_dirs(paths: StoragePaths) -> None:
    """Create the base and log directories if missing.

    Raises OSError naming the directory that could not be created.
    """
    for d in (paths.base, paths.logs_dir):
        try:
            await aiofiles.os.makedirs(d, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create directory {d}: {e}") from e
