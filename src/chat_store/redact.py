"""Credential redaction applied to every document before it is persisted."""
from __future__ import annotations

import copy
from typing import Any, FrozenSet

REDACTION_MARKER = "REDACTED"

# Deny-list: only these meta keys are redacted. Any new credential-shaped
# field must be added here or it will be written to disk verbatim.
SECRET_FIELDS: FrozenSet[str] = frozenset({"apiKey", "token", "password", "secret"})


def redact_secrets(data: Any, fields: FrozenSet[str] = SECRET_FIELDS) -> Any:
    """Return a deep copy of ``data`` with secret ``meta`` values replaced.

    The input is never mutated.
    """
    sanitized = copy.deepcopy(data)
    if not isinstance(sanitized, dict):
        return sanitized

    for conv in sanitized.get("conversations") or []:
        if not isinstance(conv, dict):
            continue
        for msg in conv.get("messages") or []:
            meta = msg.get("meta") if isinstance(msg, dict) else None
            if not isinstance(meta, dict):
                continue
            for key in meta.keys() & fields:
                meta[key] = REDACTION_MARKER
    return sanitized
