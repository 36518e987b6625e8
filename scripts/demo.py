"""Walk through the chat store: create, append, list, stats, redaction."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure src/ is on sys.path (so imports work when run directly)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from chat_store.config import configure_logging, load_config  # noqa: E402
from chat_store.store import create_store  # noqa: E402


async def run_demo(base_dir: str | None, config_path: str | None) -> None:
    cfg = load_config(config_path)
    if base_dir:
        cfg["storage"]["base_dir"] = base_dir
    configure_logging(cfg)
    store = create_store(cfg=cfg)

    await store.ensure_dirs()
    print(f"Storage location: {store.get_paths().logs_dir}")

    cid = await store.create_conversation("Demo Conversation")
    await store.append_message(cid, {
        "role": "user",
        "text": "Hello! Can you help me with After Effects expressions?",
        "meta": {"model": "gemini-2.5-flash", "aeContext": {"projectName": "Demo Project", "comp": "Main Comp"}},
    })
    await store.append_message(cid, {
        "role": "assistant",
        "text": "Of course! What effect or animation are you trying to achieve?",
        "meta": {"model": "gemini-2.5-flash", "tokens": 156, "latencyMs": 850},
    })

    conv = await store.get_conversation(cid)
    print(f"Conversation {conv['title']!r}: {len(conv['messages'])} message(s)")
    for i, m in enumerate(conv["messages"], 1):
        print(f"  {i}. [{m['timestamp']}] {m['role']}: {m['text'][:50]}")

    stats = await store.get_storage_stats()
    print(f"Active file: {stats['active_file_size'] / 1024:.2f} KB, "
          f"archives: {stats['archive_count']}, total: {stats['total_size'] / 1024:.2f} KB")

    for c in await store.get_conversation_list():
        print(f"  - {c['title']} ({c['messageCount']} messages) updated {c['updatedAt']}")

    await store.append_message(cid, {
        "role": "system",
        "text": "API configuration message",
        "meta": {"apiKey": "secret-api-key-123", "token": "bearer-token-xyz", "publicData": "visible"},
    })
    last = (await store.get_conversation(cid))["messages"][-1]
    print(f"apiKey on disk: {last['meta']['apiKey']}, token on disk: {last['meta']['token']}, "
          f"publicData: {last['meta']['publicData']}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the chat store demo.")
    parser.add_argument(
        "--base-dir",
        type=str,
        default=os.environ.get("CHAT_STORE_BASE_DIR"),
        help="App-data root to use instead of the platform default",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    args = parser.parse_args()
    asyncio.run(run_demo(args.base_dir, args.config))


if __name__ == "__main__":
    main()
