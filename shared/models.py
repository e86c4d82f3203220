"""
Shared Pydantic models for run records.
All records are immutable (frozen) after creation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


RunStatus = Literal["idle", "running", "waiting_input", "completed", "error"]
MessageType = Literal["bot", "user", "system"]
EffectMode = Literal["mock", "real"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Transcript ────────────────────────────────────────────────

class TranscriptMessage(BaseModel):
    """One line of the human-readable transcript."""
    model_config = {"frozen": True}

    id: str
    type: MessageType
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    node_id: str | None = Field(default=None)


# ─── Execution Log ─────────────────────────────────────────────

class ExecutionLogEntry(BaseModel):
    """Structured record of one node processing step (including failures)."""
    model_config = {"frozen": True}

    node_id: str
    node_type: str
    node_label: str
    action: str
    input: Any = Field(default=None)
    output: Any = Field(default=None)
    duration_ms: float = Field(default=0.0, ge=0.0)
    timestamp: datetime = Field(default_factory=_utcnow)
    success: bool = Field(default=True)


# ─── Run Snapshot ──────────────────────────────────────────────

class RunSnapshot(BaseModel):
    """Read-only view of a run handed to callers (debugger, CLI, store)."""
    model_config = {"frozen": True}

    run_id: str
    status: RunStatus
    current_node_id: str | None = Field(default=None)
    variables: dict[str, Any] = Field(default_factory=dict)
    messages: list[TranscriptMessage] = Field(default_factory=list)
    execution_log: list[ExecutionLogEntry] = Field(default_factory=list)
    visited_nodes: list[str] = Field(default_factory=list)
    error: str | None = Field(default=None)


# ─── External Effect Gateway ───────────────────────────────────

class EffectResult(BaseModel):
    """Envelope returned by every External Effect Gateway call."""
    model_config = {"frozen": True}

    success: bool
    data: Any = Field(default=None)
    error: str | None = Field(default=None)
