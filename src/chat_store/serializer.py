"""FIFO write queue guarding the active history file.

One serializer per store. It owns its queue and a single pump task; at most
one job touches the active file at a time and jobs finish in submission order.
There is no cancellation and no priority.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from .io import atomic_write_json
from .paths import StoragePaths, ensure_dirs
from .redact import redact_secrets

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


@dataclass
class _Pending:
    job: Job
    future: asyncio.Future
    label: str


class WriteSerializer:
    def __init__(self, paths: StoragePaths) -> None:
        self.paths = paths
        self._queue: Deque[_Pending] = deque()
        self._pump: Optional[asyncio.Task] = None
        self._writes = 0

    # --------- submission ----------
    def submit(self, job: Job, *, label: str = "job") -> asyncio.Future:
        """Queue ``job`` for exclusive execution; the future resolves to its result."""
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        self._queue.append(_Pending(job, fut, label))
        if self._pump is None or self._pump.done():
            self._pump = loop.create_task(self._run())
        return fut

    def enqueue(self, document: Dict[str, Any]) -> asyncio.Future:
        """Queue a snapshot write of ``document`` to the active file.

        The document is redacted (and so deep-copied) now, so later mutation
        by the caller cannot change what gets written.
        """
        snapshot = redact_secrets(document)
        return self.submit(lambda: self.write_now(snapshot), label="save")

    async def write_now(self, document: Dict[str, Any]) -> None:
        """Redact and write immediately. Only call from inside a submitted job."""
        await ensure_dirs(self.paths)
        await atomic_write_json(self.paths.active_file, redact_secrets(document))
        self._writes += 1

    # --------- state ----------
    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def busy(self) -> bool:
        return self._pump is not None and not self._pump.done()

    @property
    def write_count(self) -> int:
        return self._writes

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        while self.busy:
            await asyncio.shield(self._pump)

    # --------- pump ----------
    async def _run(self) -> None:
        while self._queue:
            item = self._queue.popleft()
            try:
                result = await item.job()
            except Exception as e:
                logger.exception("Queued %s failed", item.label)
                if not item.future.done():
                    item.future.set_exception(e)
            else:
                if not item.future.done():
                    item.future.set_result(result)
