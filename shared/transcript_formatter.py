from __future__ import annotations

import json
from typing import Any

from shared.models import ExecutionLogEntry, TranscriptMessage


_PREFIXES = {
    "bot": "Bot",
    "user": "Você",
    "system": "Sistema",
}


def _compact(value: Any, limit: int = 120) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = str(value)
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def format_message(message: TranscriptMessage) -> str:
    prefix = _PREFIXES.get(message.type, message.type)
    clock = message.timestamp.strftime("%H:%M:%S")
    return f"[{clock}] {prefix}: {message.content}"


def format_transcript(messages: list[TranscriptMessage], include_system: bool = True) -> str:
    """Render the transcript as plain text, one message per line."""
    lines = [
        format_message(message)
        for message in messages
        if include_system or message.type != "system"
    ]
    return "\n".join(lines)


def format_log_entry(entry: ExecutionLogEntry) -> str:
    marker = "ok" if entry.success else "FALHA"
    line = f"{entry.node_label} ({entry.node_type}) -> {entry.action} [{marker}, {entry.duration_ms:.1f}ms]"
    output = _compact(entry.output)
    if output:
        line += f" {output}"
    return line


def summarize_log(entries: list[ExecutionLogEntry]) -> dict[str, Any]:
    """Totals for an execution log: processed, failed, duration and per-type counts."""
    by_type: dict[str, int] = {}
    for entry in entries:
        by_type[entry.node_type] = by_type.get(entry.node_type, 0) + 1
    failed = [entry for entry in entries if not entry.success]
    return {
        "processed": len(entries),
        "failed": len(failed),
        "failed_nodes": [entry.node_id for entry in failed],
        "total_duration_ms": round(sum(entry.duration_ms for entry in entries), 3),
        "by_type": by_type,
    }
