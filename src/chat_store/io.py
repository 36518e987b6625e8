from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import aiofiles
import aiofiles.os

PathLike = Union[str, Path]

TMP_SUFFIX = ".tmp"
_COPY_CHUNK = 1024 * 1024

logger = logging.getLogger(__name__)


def dumps_pretty(data: Any) -> str:
    """Serialize ``data`` the way the history file is laid out on disk."""
    try:
        return json.dumps(data, ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize document to JSON: {e}") from e


@asynccontextmanager
async def _temp_sibling(target: Path) -> AsyncIterator[Path]:
    """Yield ``target + ".tmp"``; the temp file never outlives the block.

    On success the caller has renamed it onto the target. On any failure it
    is unlinked before the error propagates.
    """
    tmp = target.with_name(target.name + TMP_SUFFIX)
    try:
        yield tmp
    except BaseException:
        try:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)
        except OSError as cleanup_err:
            logger.warning("Could not remove temp file %s: %s", tmp, cleanup_err)
        raise


async def atomic_write_json(path: PathLike, data: Any) -> None:
    """Write JSON to ``path`` atomically (temp file, fsync, rename).

    A reader of ``path`` sees either the previous complete content or the new
    complete content. A failed rename is fatal; there is no copy fallback.
    """
    p = Path(path)
    text = dumps_pretty(data)
    try:
        async with _temp_sibling(p) as tmp:
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(text)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp, p)
    except OSError as e:
        raise OSError(f"Atomic write failed for {p}: {e}") from e
    logger.debug("Atomic write ok: %s (%d chars)", p, len(text))


async def write_json(path: PathLike, data: Any) -> None:
    """Plain (non-atomic) pretty JSON write, for user-chosen export targets."""
    p = Path(path)
    text = dumps_pretty(data)
    try:
        async with aiofiles.open(p, "w", encoding="utf-8") as f:
            await f.write(text)
    except OSError as e:
        raise OSError(f"Failed to write to {p}: {e}") from e


async def read_json(path: PathLike) -> Optional[Any]:
    """Read a JSON file, returning None if it is missing or unparseable."""
    p = Path(path)
    if not await aiofiles.os.path.exists(p):
        return None
    try:
        async with aiofiles.open(p, "r", encoding="utf-8") as f:
            raw = await f.read()
        return json.loads(raw)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Failed to read JSON from %s: %s", p, e)
        return None


async def copy_file(src: PathLike, dst: PathLike) -> None:
    """Byte-for-byte copy of ``src`` to a fresh ``dst`` (removed on failure)."""
    try:
        async with aiofiles.open(src, "rb") as fin, aiofiles.open(dst, "wb") as fout:
            while True:
                chunk = await fin.read(_COPY_CHUNK)
                if not chunk:
                    break
                await fout.write(chunk)
    except OSError as e:
        # partial archives are worse than none
        try:
            if await aiofiles.os.path.exists(dst):
                await aiofiles.os.remove(dst)
        except OSError:
            logger.warning("Could not remove partial copy %s", dst)
        raise OSError(f"Failed to copy {src} to {dst}: {e}") from e


async def file_size(path: PathLike) -> int:
    """Size in bytes, or 0 if the file does not exist."""
    try:
        st = await aiofiles.os.stat(path)
    except FileNotFoundError:
        return 0
    return st.st_size
