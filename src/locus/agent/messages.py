"""Status lines a worker writes to stdout for its parent orchestrator."""

from __future__ import annotations

import json
from typing import Any

MESSAGE_PREFIX = "@@locus "


def encode_worker_message(message_type: str, **fields: Any) -> str:
    return MESSAGE_PREFIX + json.dumps({"type": message_type, **fields}, separators=(",", ":"))


def decode_worker_message(line: str) -> dict[str, Any] | None:
    """Return the message carried by ``line``, or ``None`` for ordinary output."""

    if not line.startswith(MESSAGE_PREFIX):
        return None
    try:
        payload = json.loads(line[len(MESSAGE_PREFIX) :])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        return None
    return payload
