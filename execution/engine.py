"""Flow Execution Engine.

Interprets a flow graph one node at a time:
- Built-in handlers per node type (start, message, input, condition, action,
  escalation, integration, delay, end) plus host-registered handlers.
- Suspends at `input` and `condition` nodes; resumption is driven by the
  runner through `bind_input` / `route_condition`.
- Side effects go through the External Effect Gateway in mock or real mode.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from effects.gateway import INTEGRATION, UPDATE_VISTA, ExternalEffectGateway, build_effect_gateway
from execution.branch_resolver import branch_selectors, resolve_branch
from execution.run_state import RunState
from execution.variable_store import coerce_input, has_unresolved_tokens
from observability.logger import Observability
from shared.flow_contracts import (
    ActionConfig,
    ConditionBranch,
    ConditionConfig,
    DelayConfig,
    EndConfig,
    EscalationConfig,
    FlowDefinition,
    FlowEdge,
    FlowNode,
    InputConfig,
    IntegrationConfig,
    MessageConfig,
    RunConfig,
)
from shared.models import EffectMode, EffectResult

logger = logging.getLogger(__name__)

NodeHandler = Callable[..., Any]

CRM_ACTION_TYPES = ("update_vista",)
DEFAULT_PROPERTY_CODE = "TEST-001"


@dataclass
class NodeStepResult:
    next_node: FlowNode | None = None
    wait_for_input: bool = False


class FlowEngine:
    """Interpreter for a single flow definition."""

    def __init__(
        self,
        flow: FlowDefinition,
        *,
        config: RunConfig | None = None,
        gateway: ExternalEffectGateway | None = None,
        observability: Observability | None = None,
    ):
        self.flow = flow
        self.config = config or RunConfig()
        self.gateway = gateway or build_effect_gateway()
        self.observability = observability or Observability()
        self.node_handlers: dict[str, NodeHandler] = {}
        self._builtin_handlers: dict[str, Callable[[FlowNode, RunState, float], Awaitable[NodeStepResult]]] = {
            "start": self._process_start,
            "message": self._process_message,
            "input": self._process_input,
            "condition": self._process_condition,
            "action": self._process_action,
            "escalation": self._process_escalation,
            "integration": self._process_integration,
            "delay": self._process_delay,
            "end": self._process_end,
        }

    def register_node_handler(self, node_type: str, handler: NodeHandler) -> None:
        """Register a custom handler for a node type (takes precedence over built-ins)."""
        key = str(node_type).strip()
        if not key:
            raise ValueError("node_type must not be empty")
        self.node_handlers[key] = handler

    @property
    def effect_mode(self) -> EffectMode:
        return "real" if self.config.use_real_integrations else "mock"

    # ─── Loop ──────────────────────────────────────────────────

    async def continue_execution(self, state: RunState, from_node: FlowNode | None) -> None:
        """Process nodes from `from_node` until suspension or termination."""
        if state.processing:
            logger.warning("Run %s is already processing; ignoring re-entrant call", state.run_id)
            return

        state.processing = True
        try:
            current = from_node
            while current is not None:
                if state.cancelled:
                    logger.info("Run %s cancelled before node %s", state.run_id, current.id)
                    return

                step = await self.process_node(current, state)

                if step.wait_for_input:
                    state.suspend()
                    self.observability.log_event("run_suspended", {"node_id": current.id})
                    return

                if state.is_terminal:
                    self._emit_terminal_event(state)
                    return

                current = step.next_node
                if current is not None and self.config.step_delay_seconds > 0:
                    await asyncio.sleep(self.config.step_delay_seconds)

            if state.status == "running" and not state.cancelled:
                state.add_message("system", "Fluxo concluído (sem mais nós)")
                state.complete()
                self._emit_terminal_event(state)
        finally:
            state.processing = False

    async def process_node(self, node: FlowNode, state: RunState) -> NodeStepResult:
        """Interpret one node, recording transcript/log side effects in `state`."""
        started = time.perf_counter()
        state.enter_node(node.id)

        try:
            custom = self.node_handlers.get(node.type)
            if custom is not None:
                maybe_result = custom(engine=self, node=node, state=state)
                if inspect.isawaitable(maybe_result):
                    maybe_result = await maybe_result
                step = self._normalize_handler_result(maybe_result, node)
            else:
                handler = self._builtin_handlers.get(node.type)
                if handler is None:
                    self._log(state, node, f"Tipo não suportado: {node.type}", success=False, started=started)
                    step = NodeStepResult(next_node=self.next_node(node))
                else:
                    step = await handler(node, state, started)
        except Exception as exc:
            self.fail_node(node, state, exc, started)
            return NodeStepResult()

        self.observability.log_event(
            "node_processed",
            {
                "node_id": node.id,
                "node_type": node.type,
                "next_node_id": step.next_node.id if step.next_node else None,
                "wait_for_input": step.wait_for_input,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return step

    def fail_node(self, node: FlowNode, state: RunState, exc: Exception, started: float) -> None:
        """Record a node failure and move the run to error."""
        logger.exception("Node %s (%s) failed", node.id, node.type)
        error = str(exc) or type(exc).__name__
        self._log(state, node, f"Erro: {error}", success=False, started=started)
        state.add_message("system", f"Erro no nó '{node.label}': {error}", node.id)
        state.fail(error)

    # ─── Edge resolution ───────────────────────────────────────

    def next_node(self, node: FlowNode) -> FlowNode | None:
        """Unconditional successor, or None at a dead end."""
        edge = self._unconditional_edge(node)
        if edge is None:
            return None
        return self.flow.get_node(edge.target)

    def first_edge_target(self, node: FlowNode) -> FlowNode | None:
        """Target of the first outgoing edge in declaration order, selector or not."""
        edges = self.flow.outgoing_edges(node.id)
        return self.flow.get_node(edges[0].target) if edges else None

    def branch_edge(self, node: FlowNode, index: int, branch: ConditionBranch) -> FlowEdge | None:
        selectors = branch_selectors(index, branch)
        for edge in self.flow.outgoing_edges(node.id):
            if edge.branch_selector in selectors:
                return edge
        return None

    def _unconditional_edge(self, node: FlowNode) -> FlowEdge | None:
        edges = self.flow.outgoing_edges(node.id)
        if not edges:
            return None
        if node.type == "condition":
            for edge in edges:
                if not edge.branch_selector:
                    return edge
        return edges[0]

    # ─── Resume paths ──────────────────────────────────────────

    def bind_input(self, node: FlowNode, state: RunState, text: str) -> FlowNode | None:
        """Store the answer for a suspended input node and return its successor."""
        started = time.perf_counter()
        cfg: InputConfig = node.config
        value = coerce_input(text, cfg.expected_type)
        state.variables.set(cfg.variable_name, value)
        self._log(
            state,
            node,
            f"Entrada capturada: {cfg.variable_name}",
            success=True,
            input=text,
            output={"value": value, "expected_type": cfg.expected_type},
            started=started,
        )
        return self.next_node(node)

    def route_condition(self, node: FlowNode, state: RunState, text: str) -> NodeStepResult:
        """Pick the outgoing edge of a suspended condition node from the user's answer."""
        started = time.perf_counter()
        cfg: ConditionConfig = node.config
        index = resolve_branch(text, cfg.branches)

        if index is not None:
            branch = cfg.branches[index]
            label = branch.label or branch.id
            state.add_message("system", f"Branch selecionada: {label}", node.id)
            edge = self.branch_edge(node, index, branch)
            next_node = self.flow.get_node(edge.target) if edge else self.first_edge_target(node)
            self._log(
                state,
                node,
                f"Branch selecionada: {label}",
                success=True,
                input=text,
                output={"branch_id": branch.id, "branch_index": index, "matched_edge": edge is not None},
                started=started,
            )
        elif self.config.unmatched_branch_policy == "wait":
            state.add_message("system", "Nenhuma branch correspondente, aguardando nova resposta", node.id)
            self._log(state, node, "Nenhuma branch correspondente", success=True, input=text, started=started)
            return NodeStepResult(wait_for_input=True)
        else:
            state.add_message("system", "Nenhuma branch correspondente, usando primeira disponível", node.id)
            next_node = self.next_node(node)
            self._log(
                state,
                node,
                "Nenhuma branch correspondente (primeira disponível)",
                success=True,
                input=text,
                output={"fallback_node_id": next_node.id if next_node else None},
                started=started,
            )

        if next_node is None:
            state.add_message("system", "Nenhuma saída disponível para a condição", node.id)
            return NodeStepResult(wait_for_input=True)
        return NodeStepResult(next_node=next_node)

    # ─── Node handlers ─────────────────────────────────────────

    async def _process_start(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        self._log(state, node, "Fluxo iniciado", success=True, started=started)
        state.add_message("system", "Fluxo iniciado", node.id)
        return NodeStepResult(next_node=self.next_node(node))

    async def _process_message(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: MessageConfig = node.config
        text = self._interpolate(state, cfg.text or "[Mensagem vazia]")
        state.add_message("bot", text, node.id)
        self._log(state, node, "Mensagem enviada", success=True, output={"text": text}, started=started)

        if cfg.delay > 0:
            # Live channels wait before the next send; the simulation only notes it.
            state.add_message("system", f"Aguardando {cfg.delay:g}s (ignorado no modo teste)", node.id)
        return NodeStepResult(next_node=self.next_node(node))

    async def _process_input(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: InputConfig = node.config
        if cfg.prompt:
            state.add_message("bot", self._interpolate(state, cfg.prompt), node.id)
        state.add_message("system", f"Aguardando entrada: {cfg.variable_name}", node.id)
        self._log(
            state,
            node,
            f"Aguardando input: {cfg.variable_name}",
            success=True,
            output={"expected_type": cfg.expected_type},
            started=started,
        )
        return NodeStepResult(wait_for_input=True)

    async def _process_condition(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: ConditionConfig = node.config
        self._log(state, node, f"Condição: {cfg.condition_type}", success=True, started=started)
        state.add_message(
            "system",
            f"Condição: aguardando resposta para avaliar ({cfg.condition_type})",
            node.id,
        )
        return NodeStepResult(wait_for_input=True)

    async def _process_action(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: ActionConfig = node.config

        if cfg.action_type in CRM_ACTION_TYPES:
            mode = self.effect_mode
            if mode == "real":
                state.add_message("system", "Chamando API Vista (modo real)...", node.id)
            else:
                state.add_message("system", "[MOCK] Atualizando Vista...", node.id)

            result = await self._invoke_effect(UPDATE_VISTA, self._vista_payload(cfg, state), node)
            if result.success:
                if mode == "real":
                    state.add_message("system", f"Vista atualizado: {_to_json(result.data)}", node.id)
                else:
                    message = result.data.get("message") if isinstance(result.data, dict) else None
                    state.add_message("system", str(message or "[MOCK] Vista atualizado"), node.id)
                self._log(
                    state,
                    node,
                    f"Vista atualizado ({mode})",
                    success=True,
                    input=cfg.vista_fields,
                    output=result.data,
                    started=started,
                )
            else:
                state.add_message("system", f"Erro Vista: {result.error}", node.id)
                self._log(
                    state,
                    node,
                    "Erro Vista",
                    success=False,
                    input=cfg.vista_fields,
                    output={"error": result.error},
                    started=started,
                )
                if self._halt_on_effect_failure(state, result):
                    return NodeStepResult()

        elif cfg.action_type == "set_variable":
            name = cfg.variable_name or "var"
            state.variables.set(name, cfg.variable_value)
            self._log(
                state,
                node,
                f"Variável definida: {name}",
                success=True,
                output={name: cfg.variable_value},
                started=started,
            )
        else:
            self._log(state, node, f"Ação: {cfg.action_type}", success=True, started=started)

        return NodeStepResult(next_node=self.next_node(node))

    async def _process_escalation(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: EscalationConfig = node.config
        state.add_message("system", f"Escalado para {cfg.department} (prioridade: {cfg.priority})", node.id)
        self._log(
            state,
            node,
            f"Escalado para {cfg.department}",
            success=True,
            output={"department": cfg.department, "priority": cfg.priority, "reason": cfg.reason},
            started=started,
        )
        return NodeStepResult(next_node=self.next_node(node))

    async def _process_integration(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: IntegrationConfig = node.config
        mode = self.effect_mode
        if mode == "real":
            state.add_message("system", f"Chamando {cfg.integration_type}: {cfg.url or '(sem URL)'}", node.id)
        else:
            state.add_message("system", f"[MOCK] Integração {cfg.integration_type}", node.id)

        payload = {
            "integration_type": cfg.integration_type,
            "url": self._interpolate(state, cfg.url) if cfg.url else None,
            "method": cfg.method,
            "headers": dict(cfg.headers),
            "body": self._interpolate(state, cfg.body) if cfg.body else None,
        }
        result = await self._invoke_effect(INTEGRATION, payload, node)

        if result.success:
            action = f"Integração: {cfg.integration_type}" if mode == "real" else f"Integração mock: {cfg.integration_type}"
            self._log(state, node, action, success=True, input=payload, output=result.data, started=started)
        else:
            state.add_message("system", f"Erro na integração {cfg.integration_type}: {result.error}", node.id)
            self._log(
                state,
                node,
                f"Erro na integração: {cfg.integration_type}",
                success=False,
                input=payload,
                output={"error": result.error},
                started=started,
            )
            if self._halt_on_effect_failure(state, result):
                return NodeStepResult()

        return NodeStepResult(next_node=self.next_node(node))

    async def _process_delay(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: DelayConfig = node.config
        delay_text = f"{cfg.duration:g} {cfg.unit}"
        state.add_message("system", f"[Delay: {delay_text}] (pulado no modo teste)", node.id)
        self._log(state, node, f"Delay: {delay_text}", success=True, started=started)
        return NodeStepResult(next_node=self.next_node(node))

    async def _process_end(self, node: FlowNode, state: RunState, started: float) -> NodeStepResult:
        cfg: EndConfig = node.config
        if cfg.message:
            state.add_message("bot", self._interpolate(state, cfg.message), node.id)
        state.add_message("system", "Fluxo concluído", node.id)
        self._log(
            state,
            node,
            "Fluxo finalizado",
            success=True,
            output={"close_conversation": cfg.close_conversation},
            started=started,
        )
        state.complete()
        return NodeStepResult()

    # ─── Helpers ───────────────────────────────────────────────

    async def _invoke_effect(self, effect_type: str, payload: dict[str, Any], node: FlowNode) -> EffectResult:
        mode = self.effect_mode
        with self.observability.measure(f"effect.{effect_type}", {"node_id": node.id, "mode": mode}):
            return await self.gateway.invoke(effect_type, payload, mode)

    def _halt_on_effect_failure(self, state: RunState, result: EffectResult) -> bool:
        if self.config.effect_failure_policy != "halt":
            return False
        state.fail(result.error or "Falha em efeito externo")
        return True

    def _vista_payload(self, cfg: ActionConfig, state: RunState) -> dict[str, Any]:
        fields = {
            key: self._interpolate(state, value) if isinstance(value, str) else value
            for key, value in cfg.vista_fields.items()
        }
        code = str(fields.pop("propertyCode", "") or "")
        if not code or has_unresolved_tokens(code):
            code = str(state.variables.get("codigo_imovel") or DEFAULT_PROPERTY_CODE)
        return {"codigo": code, **fields}

    def _interpolate(self, state: RunState, text: str) -> str:
        return state.variables.interpolate(text, contact_name=self.config.contact_name)

    def _log(
        self,
        state: RunState,
        node: FlowNode,
        action: str,
        *,
        success: bool,
        started: float,
        input: Any = None,
        output: Any = None,
    ) -> None:
        state.add_log_entry(
            node,
            action,
            success=success,
            input=input,
            output=output,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _normalize_handler_result(self, raw: Any, node: FlowNode) -> NodeStepResult:
        if isinstance(raw, NodeStepResult):
            return raw
        if raw is None:
            return NodeStepResult(next_node=self.next_node(node))
        raise TypeError(f"Node handler for '{node.type}' returned unsupported value: {type(raw).__name__}")

    def _emit_terminal_event(self, state: RunState) -> None:
        if state.status == "completed":
            self.observability.log_event("run_completed", {"visited_nodes": len(state.visited_nodes)})
        elif state.status == "error":
            self.observability.log_event("run_failed", {"error": state.error}, level="WARNING")


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)
