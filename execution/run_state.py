"""Run state for one flow execution.

The state is mutated only through the named transitions below; callers get
frozen snapshots.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from execution.variable_store import VariableStore
from shared.flow_contracts import FlowNode
from shared.models import ExecutionLogEntry, MessageType, RunSnapshot, RunStatus, TranscriptMessage

TERMINAL_STATUSES: tuple[RunStatus, ...] = ("completed", "error")


def _new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


@dataclass
class RunState:
    run_id: str = field(default_factory=_new_run_id)
    status: RunStatus = "idle"
    current_node_id: str | None = None
    variables: VariableStore = field(default_factory=VariableStore)
    messages: list[TranscriptMessage] = field(default_factory=list)
    execution_log: list[ExecutionLogEntry] = field(default_factory=list)
    visited_nodes: list[str] = field(default_factory=list)
    error: str | None = None
    # Re-entrancy guard for the execution loop.
    processing: bool = False
    cancelled: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # ─── Transitions ───────────────────────────────────────────

    def begin(self, *, contact_name: str, contact_phone: str) -> None:
        if self.status != "idle":
            raise RuntimeError(f"Run '{self.run_id}' cannot start from status '{self.status}'")
        self.variables.seed(contact_name=contact_name, contact_phone=contact_phone)
        self.status = "running"

    def enter_node(self, node_id: str) -> None:
        self.current_node_id = node_id
        if node_id not in self.visited_nodes:
            self.visited_nodes.append(node_id)

    def suspend(self) -> None:
        if self.status == "running":
            self.status = "waiting_input"

    def resume(self) -> None:
        if self.status != "waiting_input":
            raise RuntimeError(f"Run '{self.run_id}' is not waiting for input (status={self.status})")
        self.status = "running"

    def complete(self) -> None:
        if self.is_terminal:
            return
        self.status = "completed"
        self.current_node_id = None

    def fail(self, error: str) -> None:
        self.status = "error"
        self.error = error
        self.current_node_id = None

    # ─── Transcript & Log ──────────────────────────────────────

    def add_message(self, message_type: MessageType, content: str, node_id: str | None = None) -> TranscriptMessage:
        message = TranscriptMessage(
            id=f"msg-{uuid.uuid4().hex[:12]}",
            type=message_type,
            content=content,
            node_id=node_id,
        )
        self.messages.append(message)
        return message

    def add_log_entry(
        self,
        node: FlowNode,
        action: str,
        *,
        success: bool,
        input: Any = None,
        output: Any = None,
        duration_ms: float = 0.0,
    ) -> ExecutionLogEntry:
        entry = ExecutionLogEntry(
            node_id=node.id,
            node_type=node.type,
            node_label=node.label,
            action=action,
            input=input,
            output=output,
            duration_ms=round(max(duration_ms, 0.0), 3),
            success=success,
        )
        self.execution_log.append(entry)
        return entry

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.run_id,
            status=self.status,
            current_node_id=self.current_node_id,
            variables=self.variables.as_dict(),
            messages=list(self.messages),
            execution_log=list(self.execution_log),
            visited_nodes=list(self.visited_nodes),
            error=self.error,
        )
