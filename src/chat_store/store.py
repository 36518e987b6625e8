"""Persistent chat history for the panel (append-only JSON, atomic, rotating).

Public API (all coroutines):
    load_chat() -> ChatDatabase
    save_chat(doc) -> None
    create_conversation(title) -> str
    append_message(conversation_id, message) -> Message
    rename_conversation(conversation_id, title) -> None
    delete_conversation(conversation_id) -> bool
    get_conversation(conversation_id) -> Conversation | None
    get_conversation_list() -> list[ConversationSummary]
    clear_all() -> Path | None
    export_to_file(path) -> Path
    get_storage_stats() -> dict

``save_chat`` is last-writer-wins at the snapshot level. The mutating helpers
instead run their whole load-modify-write cycle inside the write serializer,
so concurrent appends never lose each other's messages.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

import aiofiles.os

from .config import load_config
from .io import file_size, read_json, write_json
from .models import (
    ChatDatabase,
    Conversation,
    ConversationSummary,
    Message,
    MessageInput,
    empty_database,
    is_valid_database,
)
from .paths import (
    DEFAULT_APP,
    DEFAULT_VENDOR,
    FixedPathResolver,
    PathResolver,
    StoragePaths,
    ensure_dirs,
    resolver_for_platform,
)
from .rotation import DEFAULT_MAX_BYTES, RotationManager, list_archives
from .serializer import WriteSerializer

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"

T = TypeVar("T")


class ConversationNotFound(LookupError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class RotationError(RuntimeError):
    """Rotation failed after the triggering append was already persisted."""

    def __init__(self, message: Message) -> None:
        super().__init__(f"Log rotation failed after appending message {message['id']}")
        self.message = message


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _find(data: ChatDatabase, conversation_id: str) -> Conversation:
    for conv in data["conversations"]:
        if conv.get("id") == conversation_id:
            return conv
    raise ConversationNotFound(conversation_id)


class ConversationStore:
    """Conversation CRUD on top of a single active JSON file."""

    def __init__(
        self,
        resolver: Optional[PathResolver] = None,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        default_title: str = DEFAULT_TITLE,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.resolver = resolver or resolver_for_platform()
        self.paths = self.resolver.resolve()
        self.max_bytes = max_bytes
        self.default_title = default_title
        self._clock = clock
        self._writer = WriteSerializer(self.paths)
        self._rotation = RotationManager(self.paths, clock=clock)

    # --------- paths ----------
    def get_paths(self) -> StoragePaths:
        return self.paths

    async def ensure_dirs(self) -> None:
        await ensure_dirs(self.paths)

    def _now_iso(self) -> str:
        return self._clock().isoformat(timespec="milliseconds")

    # --------- raw document ----------
    async def load_chat(self) -> ChatDatabase:
        """Read the active file; missing or corrupt files yield an empty database."""
        data = await read_json(self.paths.active_file)
        if data is None:
            return empty_database()
        if not is_valid_database(data):
            logger.warning("Ignoring structurally invalid history file %s", self.paths.active_file)
            return empty_database()
        return data

    async def save_chat(self, data: ChatDatabase) -> None:
        """Persist a whole snapshot (redacted) through the write queue."""
        if not is_valid_database(data):
            raise ValueError("save_chat expects a ChatDatabase with 'version' and 'conversations'")
        await self._writer.enqueue(data)

    async def flush(self) -> None:
        """Wait for every queued write to finish."""
        await self._writer.join()

    async def _mutate(self, label: str, fn: Callable[[ChatDatabase], T]) -> T:
        async def job() -> T:
            data = await self.load_chat()
            result = fn(data)
            await self._writer.write_now(data)
            return result

        return await self._writer.submit(job, label=label)

    # --------- conversations ----------
    async def create_conversation(self, title: Optional[str] = None) -> str:
        if title is None:
            title = self.default_title
        conversation_id = str(uuid.uuid4())

        def apply(data: ChatDatabase) -> str:
            now = self._now_iso()
            data["conversations"].append({
                "id": conversation_id,
                "title": title,
                "createdAt": now,
                "updatedAt": now,
                "messages": [],
            })
            return conversation_id

        await self._mutate("create_conversation", apply)
        logger.info("Created conversation %s", conversation_id)
        return conversation_id

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        def apply(data: ChatDatabase) -> None:
            _find(data, conversation_id)["title"] = title

        await self._mutate("rename_conversation", apply)

    async def delete_conversation(self, conversation_id: str) -> bool:
        def apply(data: ChatDatabase) -> bool:
            before = len(data["conversations"])
            data["conversations"] = [c for c in data["conversations"] if c.get("id") != conversation_id]
            return len(data["conversations"]) < before

        deleted = await self._mutate("delete_conversation", apply)
        if deleted:
            logger.info("Deleted conversation %s", conversation_id)
        return deleted

    async def append_message(
        self,
        conversation_id: str,
        message: Union[MessageInput, Mapping[str, Any]],
    ) -> Message:
        """Append a message, then rotate the active file if it grew too large.

        Raises ConversationNotFound for unknown ids and pydantic's
        ValidationError for messages without role/text. If rotation fails the
        message is already on disk and RotationError carries it.
        """
        incoming = MessageInput.model_validate(message)

        async def job() -> Message:
            data = await self.load_chat()
            conv = _find(data, conversation_id)
            now = self._now_iso()
            new_message: Message = {
                "id": str(uuid.uuid4()),
                "role": incoming.role,
                "text": incoming.text,
                "meta": dict(incoming.meta),
                "timestamp": now,
            }
            conv["messages"].append(new_message)
            conv["updatedAt"] = now
            await self._writer.write_now(data)

            try:
                await self._rotation.rotate_if_needed(self.max_bytes)
            except Exception as e:
                logger.exception("Log rotation failed after append to %s", conversation_id)
                raise RotationError(new_message) from e
            return new_message

        return await self._writer.submit(job, label="append_message")

    # --------- read views ----------
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        data = await self.load_chat()
        try:
            return _find(data, conversation_id)
        except ConversationNotFound:
            return None

    async def get_conversation_list(self) -> List[ConversationSummary]:
        data = await self.load_chat()
        return [
            {
                "id": c["id"],
                "title": c.get("title", ""),
                "createdAt": c.get("createdAt", ""),
                "updatedAt": c.get("updatedAt", ""),
                "messageCount": len(c.get("messages") or []),
            }
            for c in data["conversations"]
        ]

    # --------- maintenance ----------
    async def clear_all(self) -> Optional[Path]:
        """Back up the active file (if any) and reset it to an empty database.

        Returns the backup path, or None when there was nothing to back up.
        """
        async def job() -> Optional[Path]:
            await ensure_dirs(self.paths)
            backup: Optional[Path] = None
            if await aiofiles.os.path.exists(self.paths.active_file):
                stamp = self._clock().strftime("%Y%m%dT%H%M%S%f")
                backup = await self._rotation.archive_active(stamp)
                logger.info("Backup created: %s", backup)
            await self._writer.write_now(empty_database())
            return backup

        backup = await self._writer.submit(job, label="clear_all")
        logger.info("Chat history cleared")
        return backup

    async def export_to_file(self, path: Union[str, Path]) -> Path:
        """Write the current database, as loaded, to a caller-chosen path."""
        await self._writer.join()
        data = await self.load_chat()
        target = Path(path)
        await write_json(target, data)
        logger.info("Chat data exported to %s", target)
        return target

    async def get_storage_stats(self) -> Dict[str, Any]:
        active = self.paths.active_file
        exists = await aiofiles.os.path.exists(active)
        active_size = await file_size(active) if exists else 0
        archives = await list_archives(self.paths.logs_dir)
        archive_size = 0
        for p in archives:
            archive_size += await file_size(p)
        return {
            "logs_dir": str(self.paths.logs_dir),
            "active_file_exists": exists,
            "active_file_size": active_size,
            "archive_count": len(archives),
            "archive_size": archive_size,
            "total_size": active_size + archive_size,
        }


def create_store(config_path: Optional[str] = None, cfg: Optional[Dict[str, Any]] = None) -> ConversationStore:
    """Build a ConversationStore from YAML configuration."""
    cfg = cfg if cfg is not None else load_config(config_path)
    st = cfg.get("storage", {}) or {}
    vendor = st.get("vendor") or DEFAULT_VENDOR
    app = st.get("app") or DEFAULT_APP
    base_dir = st.get("base_dir")
    if base_dir:
        resolver: PathResolver = FixedPathResolver(Path(base_dir).expanduser(), vendor, app)
    else:
        resolver = resolver_for_platform(vendor=vendor, app=app)
    return ConversationStore(
        resolver,
        max_bytes=int(st.get("max_bytes", DEFAULT_MAX_BYTES)),
        default_title=str(st.get("default_title") or DEFAULT_TITLE),
    )
