"""Persistent conversation store for the After Effects chat panel.

Typical usage
-------------
from chat_store import create_store
store = create_store()
cid = await store.create_conversation("Demo")
await store.append_message(cid, {"role": "user", "text": "Hello"})
"""

from __future__ import annotations

from .models import ChatDatabase, Conversation, Message, MessageInput, empty_database
from .paths import (
    FixedPathResolver,
    LinuxPathResolver,
    MacPathResolver,
    PathResolver,
    StoragePaths,
    WindowsPathResolver,
    resolver_for_platform,
)
from .redact import REDACTION_MARKER, SECRET_FIELDS, redact_secrets
from .rotation import RotationManager
from .serializer import WriteSerializer
from .store import ConversationNotFound, ConversationStore, RotationError, create_store

__all__ = [
    "ChatDatabase",
    "Conversation",
    "ConversationNotFound",
    "ConversationStore",
    "FixedPathResolver",
    "LinuxPathResolver",
    "MacPathResolver",
    "Message",
    "MessageInput",
    "PathResolver",
    "REDACTION_MARKER",
    "RotationError",
    "RotationManager",
    "SECRET_FIELDS",
    "StoragePaths",
    "WindowsPathResolver",
    "WriteSerializer",
    "create_store",
    "empty_database",
    "get_version",
    "redact_secrets",
    "resolver_for_platform",
    "__version__",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
