from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import aiofiles.os
import pydantic
import pytest

import chat_store.rotation as rotation
from chat_store.paths import FixedPathResolver
from chat_store.redact import REDACTION_MARKER
from chat_store.store import ConversationNotFound, ConversationStore, RotationError


def _on_disk(store: ConversationStore):
    return json.loads(store.paths.active_file.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_demo_scenario_redacts_api_key(store: ConversationStore):
    cid = await store.create_conversation("Demo")
    await store.append_message(cid, {"role": "user", "text": "Hello"})
    returned = await store.append_message(
        cid, {"role": "assistant", "text": "Hi!", "meta": {"apiKey": "secret-123", "provider": "gemini"}}
    )
    # the caller's own copy is not redacted
    assert returned["meta"]["apiKey"] == "secret-123"

    fresh = ConversationStore(store.resolver)
    conv = await fresh.get_conversation(cid)
    assert conv["title"] == "Demo"
    assert [m["role"] for m in conv["messages"]] == ["user", "assistant"]
    assert conv["messages"][1]["meta"]["apiKey"] == REDACTION_MARKER
    assert conv["messages"][1]["meta"]["provider"] == "gemini"
    assert "secret-123" not in store.paths.active_file.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_load_chat_defaults(store: ConversationStore):
    assert await store.load_chat() == {"version": 1, "conversations": []}

    await store.ensure_dirs()
    store.paths.active_file.write_text("{ not json", encoding="utf-8")
    assert await store.load_chat() == {"version": 1, "conversations": []}

    store.paths.active_file.write_text(json.dumps({"conversations": "nope"}), encoding="utf-8")
    assert await store.load_chat() == {"version": 1, "conversations": []}


@pytest.mark.asyncio
async def test_save_then_load_roundtrip(store: ConversationStore):
    doc = {
        "version": 1,
        "conversations": [{
            "id": "c1", "title": "Ünïcode ✓", "createdAt": "2024-01-01T00:00:00.000+00:00",
            "updatedAt": "2024-01-01T00:00:00.000+00:00",
            "messages": [{"id": "m1", "role": "system", "text": "x", "timestamp": "2024-01-01T00:00:00.000+00:00",
                          "meta": {"password": "hunter2", "latencyMs": 12}}],
        }],
    }
    await store.save_chat(doc)
    loaded = await store.load_chat()

    assert loaded["conversations"][0]["messages"][0]["meta"] == {"password": REDACTION_MARKER, "latencyMs": 12}
    loaded["conversations"][0]["messages"][0]["meta"]["password"] = "hunter2"
    assert loaded == doc


@pytest.mark.asyncio
async def test_save_chat_rejects_non_database(store: ConversationStore):
    with pytest.raises(ValueError):
        await store.save_chat({"conversations": []})


@pytest.mark.asyncio
async def test_create_conversation_defaults(store: ConversationStore):
    cid = await store.create_conversation()
    conv = await store.get_conversation(cid)
    assert conv["title"] == "New Conversation"
    assert conv["messages"] == []
    assert conv["createdAt"] == conv["updatedAt"]


@pytest.mark.asyncio
async def test_create_conversation_keeps_explicit_empty_title(store: ConversationStore):
    cid = await store.create_conversation("")
    assert (await store.get_conversation(cid))["title"] == ""


@pytest.mark.asyncio
async def test_append_with_null_meta_stores_empty_meta(store: ConversationStore):
    cid = await store.create_conversation("t")
    msg = await store.append_message(cid, {"role": "user", "text": "x", "meta": None})
    assert msg["meta"] == {}
    assert _on_disk(store)["conversations"][0]["messages"][0]["meta"] == {}


@pytest.mark.asyncio
async def test_append_fills_ids_and_advances_updated_at(tmp_data_dir: Path):
    ticks = iter(range(100))

    def clock():
        return datetime(2024, 3, 5, tzinfo=timezone.utc) + timedelta(seconds=next(ticks))

    store = ConversationStore(FixedPathResolver(tmp_data_dir), clock=clock)
    cid = await store.create_conversation("t")
    m1 = await store.append_message(cid, {"role": "user", "text": "one"})
    m2 = await store.append_message(cid, {"role": "assistant", "text": "two"})

    assert m1["id"] != m2["id"]
    assert m1["meta"] == {}
    conv = await store.get_conversation(cid)
    assert conv["updatedAt"] == m2["timestamp"] > conv["createdAt"]


@pytest.mark.asyncio
async def test_append_to_unknown_conversation(store: ConversationStore):
    with pytest.raises(ConversationNotFound) as exc:
        await store.append_message("missing", {"role": "user", "text": "x"})
    assert exc.value.conversation_id == "missing"
    assert not store.paths.active_file.exists()


@pytest.mark.asyncio
async def test_append_requires_role_and_text(store: ConversationStore):
    cid = await store.create_conversation("t")
    with pytest.raises(pydantic.ValidationError):
        await store.append_message(cid, {"role": "user", "text": ""})
    with pytest.raises(ValueError):
        await store.append_message(cid, {"text": "no role"})


@pytest.mark.asyncio
async def test_concurrent_appends_all_persist(store: ConversationStore):
    cid = await store.create_conversation("busy")
    n = 25
    await asyncio.gather(*(
        store.append_message(cid, {"role": "user", "text": f"msg {i}"}) for i in range(n)
    ))

    doc = _on_disk(store)
    texts = [m["text"] for m in doc["conversations"][0]["messages"]]
    assert texts == [f"msg {i}" for i in range(n)]
    assert len({m["id"] for m in doc["conversations"][0]["messages"]}) == n


@pytest.mark.asyncio
async def test_list_view_has_counts_not_bodies(store: ConversationStore):
    a = await store.create_conversation("A")
    b = await store.create_conversation("B")
    await store.append_message(b, {"role": "user", "text": "x"})

    listing = await store.get_conversation_list()
    assert [c["id"] for c in listing] == [a, b]
    assert [c["messageCount"] for c in listing] == [0, 1]
    assert all("messages" not in c for c in listing)


@pytest.mark.asyncio
async def test_rename_and_delete(store: ConversationStore):
    cid = await store.create_conversation("old")
    keep = await store.create_conversation("keep")
    await store.rename_conversation(cid, "new")
    assert (await store.get_conversation(cid))["title"] == "new"

    with pytest.raises(ConversationNotFound):
        await store.rename_conversation("missing", "x")

    assert await store.delete_conversation(cid) is True
    assert await store.delete_conversation(cid) is False
    assert await store.get_conversation(cid) is None
    assert [c["id"] for c in await store.get_conversation_list()] == [keep]


@pytest.mark.asyncio
async def test_append_triggers_rotation(tmp_data_dir: Path, fixed_clock):
    store = ConversationStore(FixedPathResolver(tmp_data_dir), max_bytes=400, clock=fixed_clock)
    cid = await store.create_conversation("big")
    msg = await store.append_message(cid, {"role": "user", "text": "y" * 500})

    archive = store.paths.logs_dir / "chat_history.20240305.json"
    archived = json.loads(archive.read_text(encoding="utf-8"))
    assert archived["conversations"][0]["messages"][0]["id"] == msg["id"]
    assert _on_disk(store) == {"version": 1, "conversations": []}


@pytest.mark.asyncio
async def test_rotation_failure_keeps_appended_message(tmp_data_dir: Path, fixed_clock, monkeypatch, caplog):
    store = ConversationStore(FixedPathResolver(tmp_data_dir), max_bytes=10, clock=fixed_clock)
    cid = await store.create_conversation("t")

    async def broken_copy(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(rotation, "copy_file", broken_copy)
    with caplog.at_level(logging.ERROR, logger="chat_store.store"):
        with pytest.raises(RotationError) as exc:
            await store.append_message(cid, {"role": "user", "text": "keep me"})

    assert isinstance(exc.value.__cause__, OSError)
    logged = [r for r in caplog.records if r.name == "chat_store.store"]
    assert logged and logged[0].exc_info is not None and logged[0].exc_info[0] is OSError
    conv = await store.get_conversation(cid)
    assert conv["messages"][0]["id"] == exc.value.message["id"]
    assert conv["messages"][0]["text"] == "keep me"


@pytest.mark.asyncio
async def test_failed_write_propagates_and_keeps_old_file(store: ConversationStore, monkeypatch):

    cid = await store.create_conversation("t")
    before = store.paths.active_file.read_bytes()

    async def broken_replace(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(aiofiles.os, "replace", broken_replace)
    with pytest.raises(OSError):
        await store.append_message(cid, {"role": "user", "text": "lost"})

    assert store.paths.active_file.read_bytes() == before
    assert not list(store.paths.logs_dir.glob("*.tmp"))


@pytest.mark.asyncio
async def test_clear_all_twice_backs_up_each_time(store: ConversationStore):
    cid = await store.create_conversation("history")
    await store.append_message(cid, {"role": "user", "text": "precious"})

    first = await store.clear_all()
    assert first is not None
    assert json.loads(first.read_text(encoding="utf-8"))["conversations"][0]["id"] == cid
    assert _on_disk(store) == {"version": 1, "conversations": []}

    second = await store.clear_all()
    assert second is not None and second != first
    assert json.loads(second.read_text(encoding="utf-8")) == {"version": 1, "conversations": []}
    assert _on_disk(store) == {"version": 1, "conversations": []}


@pytest.mark.asyncio
async def test_clear_all_without_history(store: ConversationStore):
    assert await store.clear_all() is None
    assert _on_disk(store) == {"version": 1, "conversations": []}


@pytest.mark.asyncio
async def test_export_to_file(store: ConversationStore, tmp_path: Path):
    cid = await store.create_conversation("exported")
    await store.append_message(cid, {"role": "user", "text": "hi", "meta": {"secret": "s"}})

    out = await store.export_to_file(tmp_path / "export.json")
    exported = json.loads(out.read_text(encoding="utf-8"))
    assert exported == await store.load_chat()
    assert exported["conversations"][0]["messages"][0]["meta"]["secret"] == REDACTION_MARKER


@pytest.mark.asyncio
async def test_storage_stats(tmp_data_dir: Path, fixed_clock):
    store = ConversationStore(FixedPathResolver(tmp_data_dir), clock=fixed_clock)
    stats = await store.get_storage_stats()
    assert stats["active_file_exists"] is False
    assert stats["archive_count"] == 0 and stats["total_size"] == 0

    cid = await store.create_conversation("s")
    await store.append_message(cid, {"role": "user", "text": "x"})
    backup = await store.clear_all()

    stats = await store.get_storage_stats()
    active_size = store.paths.active_file.stat().st_size
    assert stats["active_file_exists"] is True
    assert stats["active_file_size"] == active_size
    assert stats["archive_count"] == 1
    assert stats["archive_size"] == backup.stat().st_size
    assert stats["total_size"] == active_size + backup.stat().st_size


@pytest.mark.asyncio
async def test_independent_stores_do_not_share_queues(tmp_path: Path):
    s1 = ConversationStore(FixedPathResolver(tmp_path / "one"))
    s2 = ConversationStore(FixedPathResolver(tmp_path / "two"))
    c1, c2 = await asyncio.gather(s1.create_conversation("one"), s2.create_conversation("two"))

    assert [c["id"] for c in await s1.get_conversation_list()] == [c1]
    assert [c["id"] for c in await s2.get_conversation_list()] == [c2]
