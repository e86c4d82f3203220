"""Flow Runner: run state machine over the Flow Engine.

States: idle → running → {waiting_input ⇄ running} → {completed | error}.
One runner per conversation; a runner is never shared between runs
executing concurrently.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from effects.gateway import ExternalEffectGateway
from execution.engine import FlowEngine, NodeStepResult
from execution.run_log_store import RunLogStore
from execution.run_state import RunState
from observability.logger import Observability
from shared.flow_contracts import FlowDefinition, RunConfig
from shared.models import ExecutionLogEntry, RunSnapshot, RunStatus, TranscriptMessage

logger = logging.getLogger(__name__)

MISSING_START_ERROR = "Nó de início não encontrado"


class FlowRunner:
    """Exposes start / send_input / reset and read-only accessors for one run."""

    def __init__(
        self,
        flow: FlowDefinition,
        *,
        config: RunConfig | None = None,
        gateway: ExternalEffectGateway | None = None,
        store: RunLogStore | None = None,
        observability: Observability | None = None,
    ):
        self.flow = flow
        self.config = config or RunConfig()
        self.store = store
        self._observability = observability or Observability()
        self.engine = FlowEngine(flow, config=self.config, gateway=gateway, observability=self._observability)
        self._state = RunState()
        self._persisted_log_count = 0

    # ─── Accessors ─────────────────────────────────────────────

    @property
    def run_id(self) -> str:
        return self._state.run_id

    @property
    def status(self) -> RunStatus:
        return self._state.status

    @property
    def current_node_id(self) -> str | None:
        return self._state.current_node_id

    @property
    def variables(self) -> dict[str, Any]:
        return self._state.variables.as_dict()

    @property
    def messages(self) -> list[TranscriptMessage]:
        return list(self._state.messages)

    @property
    def execution_log(self) -> list[ExecutionLogEntry]:
        return list(self._state.execution_log)

    @property
    def visited_nodes(self) -> list[str]:
        return list(self._state.visited_nodes)

    @property
    def error(self) -> str | None:
        return self._state.error

    def snapshot(self) -> RunSnapshot:
        return self._state.snapshot()

    # ─── Operations ────────────────────────────────────────────

    async def start(self) -> RunSnapshot:
        """Seed variables and run from the start node until the first suspension."""
        state = self._state
        if state.status != "idle":
            logger.warning("Run %s cannot start from status '%s'; call reset() first", state.run_id, state.status)
            return state.snapshot()

        self.engine.observability = self._observability.for_run(state.run_id)
        state.begin(contact_name=self.config.contact_name, contact_phone=self.config.contact_phone)
        self.engine.observability.log_event(
            "run_started",
            {"flow_id": self.flow.id, "mode": self.engine.effect_mode},
        )

        start_node = self.flow.start_node()
        if start_node is None:
            state.add_message("system", f"Erro: {MISSING_START_ERROR}")
            state.fail(MISSING_START_ERROR)
            self.engine.observability.log_event("run_failed", {"error": MISSING_START_ERROR}, level="WARNING")
        else:
            await self.engine.continue_execution(state, start_node)

        self._persist(state)
        return state.snapshot()

    async def send_input(self, text: str) -> RunSnapshot:
        """Resume a run suspended at an input or condition node."""
        state = self._state
        if state.status != "waiting_input" or state.processing:
            logger.warning(
                "Ignoring input for run %s: status=%s processing=%s",
                state.run_id,
                state.status,
                state.processing,
            )
            return state.snapshot()

        node = self.flow.get_node(state.current_node_id)
        if node is None:
            state.fail(f"Nó atual '{state.current_node_id}' não encontrado")
            self._persist(state)
            return state.snapshot()

        state.add_message("user", text)
        state.resume()
        self.engine.observability.log_event("run_resumed", {"node_id": node.id, "node_type": node.type})

        started = time.perf_counter()
        try:
            if node.type == "input":
                step = NodeStepResult(next_node=self.engine.bind_input(node, state, text))
            elif node.type == "condition":
                step = self.engine.route_condition(node, state, text)
            else:
                step = None
        except Exception as exc:
            self.engine.fail_node(node, state, exc, started)
            self.engine.observability.log_event("run_failed", {"error": state.error}, level="WARNING")
            self._persist(state)
            return state.snapshot()

        if step is None:
            error = f"Nó '{node.id}' do tipo '{node.type}' não aguarda entrada"
            logger.error("Run %s: %s", state.run_id, error)
            state.add_message("system", f"Erro: {error}", node.id)
            state.fail(error)
            self._persist(state)
            return state.snapshot()

        if step.wait_for_input:
            state.suspend()
            self._persist(state)
            return state.snapshot()

        await self.engine.continue_execution(state, step.next_node)
        self._persist(state)
        return state.snapshot()

    def reset(self) -> RunSnapshot:
        """Discard the current run and return to idle. Safe in any state."""
        self._state.cancelled = True
        self._state = RunState()
        self._persisted_log_count = 0
        return self._state.snapshot()

    # ─── Persistence ───────────────────────────────────────────

    def _persist(self, state: RunState) -> None:
        if self.store is None or state is not self._state:
            return
        try:
            new_entries = state.execution_log[self._persisted_log_count:]
            self.store.append_log_entries(state.run_id, new_entries, start_seq=self._persisted_log_count)
            self._persisted_log_count += len(new_entries)
            self.store.save_run(state.snapshot(), flow_id=self.flow.id)
        except Exception as exc:
            logger.warning("Failed to persist run %s: %s", state.run_id, exc)
