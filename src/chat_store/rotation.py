"""Size-based rotation of the active history file into dated archives."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List

import aiofiles.os

from .io import atomic_write_json, copy_file, file_size
from .models import empty_database
from .paths import StoragePaths

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 2_000_000

# chat_history.<stamp>[.N].json, never the active chat_history.json itself
_ARCHIVE_RE = re.compile(r"^chat_history\.[0-9A-Za-z-]+(\.\d+)?\.json$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_archive_name(name: str) -> bool:
    return bool(_ARCHIVE_RE.match(name))


async def unique_archive_path(logs_dir: Path, stamp: str) -> Path:
    """First free name among chat_history.<stamp>.json, chat_history.<stamp>.1.json, ..."""
    candidate = logs_dir / f"chat_history.{stamp}.json"
    counter = 1
    while await aiofiles.os.path.exists(candidate):
        candidate = logs_dir / f"chat_history.{stamp}.{counter}.json"
        counter += 1
    return candidate


async def list_archives(logs_dir: Path) -> List[Path]:
    if not await aiofiles.os.path.isdir(logs_dir):
        return []
    names = await aiofiles.os.listdir(logs_dir)
    return sorted(logs_dir / n for n in names if is_archive_name(n))


class RotationManager:
    """Archives the active file once it reaches a size threshold.

    Not synchronized on its own: the store runs it inside the write
    serializer so no save can land between the archive copy and the reset.
    """

    def __init__(self, paths: StoragePaths, *, clock: Callable[[], datetime] = _utc_now) -> None:
        self.paths = paths
        self.clock = clock

    async def archive_active(self, stamp: str) -> Path:
        """Copy the active file to a fresh archive name and return it."""
        dst = await unique_archive_path(self.paths.logs_dir, stamp)
        await copy_file(self.paths.active_file, dst)
        return dst

    async def rotate_if_needed(self, max_bytes: int = DEFAULT_MAX_BYTES) -> bool:
        """Archive and reset the active file if it is at least ``max_bytes``.

        Returns True iff a rotation happened. If the copy fails the active
        file is left untouched and the error propagates.
        """
        active = self.paths.active_file
        if not await aiofiles.os.path.exists(active):
            return False
        size = await file_size(active)
        if size < max_bytes:
            return False

        dst = await self.archive_active(self.clock().strftime("%Y%m%d"))
        await atomic_write_json(active, empty_database())
        logger.info("Rotated chat log (%d bytes >= %d): %s", size, max_bytes, dst)
        return True
