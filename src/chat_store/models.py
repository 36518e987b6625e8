"""Document shapes persisted in the chat history file."""
from __future__ import annotations

from typing import Any, Dict, List, TypedDict

from pydantic import BaseModel, Field, field_validator

FORMAT_VERSION = 1


class Message(TypedDict):
    """A single chat message stored inside a conversation."""

    id: str              # unique within its conversation
    role: str            # "user" | "assistant" | "system" (open set)
    text: str
    meta: Dict[str, Any]  # provider, tokens, latency, AE context...
    timestamp: str       # ISO-8601, set at append time


class Conversation(TypedDict):
    id: str
    title: str
    createdAt: str
    updatedAt: str
    messages: List[Message]


class ChatDatabase(TypedDict):
    version: int
    conversations: List[Conversation]


class ConversationSummary(TypedDict):
    """List-view entry: metadata plus a message count, no bodies."""

    id: str
    title: str
    createdAt: str
    updatedAt: str
    messageCount: int


class MessageInput(BaseModel):
    """Caller-supplied message, validated before it touches disk."""

    role: str = Field(..., min_length=1, description="Message author role.")
    text: str = Field(..., min_length=1)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("meta", mode="before")
    @classmethod
    def _meta_or_empty(cls, v: Any) -> Any:
        return v or {}


def empty_database() -> ChatDatabase:
    """Return a fresh, empty ChatDatabase."""
    return {"version": FORMAT_VERSION, "conversations": []}


def is_valid_database(data: Any) -> bool:
    """Shallow structural check applied to documents read from disk."""
    if not isinstance(data, dict):
        return False
    if not isinstance(data.get("version"), int):
        return False
    conversations = data.get("conversations")
    if not isinstance(conversations, list):
        return False
    for conv in conversations:
        if not isinstance(conv, dict) or not isinstance(conv.get("id"), str):
            return False
        if not isinstance(conv.get("messages"), list):
            return False
    return True
