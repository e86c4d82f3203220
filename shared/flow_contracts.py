"""Flow definition contracts consumed by the flow runtime.

A flow is an immutable graph authored in the visual editor: typed nodes
(each with a type-specific configuration) and directed edges. Configuration
variants are validated once, when the definition is accepted, so node
handlers always receive a concrete config model.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, PrivateAttr, SkipValidation, field_validator, model_validator
from pydantic.alias_generators import to_camel


NodeType = Literal[
    "start",
    "message",
    "input",
    "condition",
    "action",
    "escalation",
    "integration",
    "delay",
    "end",
]

ScalarValue = str | int | float | bool | None
ExpectedInputType = Literal["text", "number", "currency", "yes_no", "email", "phone"]
EffectFailurePolicy = Literal["continue", "halt"]
UnmatchedBranchPolicy = Literal["first_edge", "wait"]

_CONFIG_MODEL_SETTINGS = {
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


# ─── Node configuration variants ──────────────────────────────

class StartConfig(BaseModel):
    """Entry point. Trigger data is informational for the runtime."""
    model_config = _CONFIG_MODEL_SETTINGS

    trigger: str = Field(default="first_message")
    keywords: list[str] = Field(default_factory=list)
    template_id: str | None = Field(default=None)


class MessageConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    text: str = Field(default="")
    delay: float = Field(default=0.0, ge=0.0, description="Seconds before sending on a live channel")
    use_client_name: bool = Field(default=False)


class InputConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    prompt: str = Field(default="")
    variable_name: str = Field(default="resposta", min_length=1)
    expected_type: ExpectedInputType = Field(default="text")

    @field_validator("variable_name")
    @classmethod
    def strip_variable_name(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("variableName must not be blank")
        return name


class ConditionBranch(BaseModel):
    """One outcome of a condition node. Declaration order is tie-break order."""
    model_config = _CONFIG_MODEL_SETTINGS

    id: str
    label: str = Field(default="")
    value: str = Field(default="")
    keywords: list[str] | None = Field(default=None)


class ConditionConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    condition_type: str = Field(default="keyword")
    branches: list[ConditionBranch] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_branches(self) -> "ConditionConfig":
        branch_ids = [branch.id for branch in self.branches]
        if len(set(branch_ids)) != len(branch_ids):
            raise ValueError("Condition branch ids must be unique")
        return self


class ActionConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    action_type: str = Field(default="set_variable")
    variable_name: str | None = Field(default=None)
    variable_value: ScalarValue = Field(default=None)
    vista_fields: dict[str, Any] = Field(default_factory=dict)
    tag_id: str | None = Field(default=None)
    contact_fields: dict[str, Any] = Field(default_factory=dict)


class EscalationConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    department: str = Field(default="vendas")
    priority: str = Field(default="medium")
    reason: str = Field(default="")


class IntegrationConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    integration_type: str = Field(default="webhook")
    url: str | None = Field(default=None)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = Field(default="POST")
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = Field(default=None)


class DelayConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    duration: float = Field(default=1.0, ge=0.0)
    unit: Literal["seconds", "minutes", "hours"] = Field(default="seconds")


class EndConfig(BaseModel):
    model_config = _CONFIG_MODEL_SETTINGS

    message: str = Field(default="")
    close_conversation: bool = Field(default=False)


NodeConfig = (
    StartConfig
    | MessageConfig
    | InputConfig
    | ConditionConfig
    | ActionConfig
    | EscalationConfig
    | IntegrationConfig
    | DelayConfig
    | EndConfig
    | dict[str, Any]
)

NODE_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "start": StartConfig,
    "message": MessageConfig,
    "input": InputConfig,
    "condition": ConditionConfig,
    "action": ActionConfig,
    "escalation": EscalationConfig,
    "integration": IntegrationConfig,
    "delay": DelayConfig,
    "end": EndConfig,
}


# ─── Graph ─────────────────────────────────────────────────────

class FlowNode(BaseModel):
    """Typed unit of work. Unknown types keep their raw config."""
    model_config = {"frozen": True}

    id: str
    type: str
    label: str = Field(default="")
    # Built by parse_config; unknown node types keep the raw dict.
    config: SkipValidation[NodeConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def parse_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        # Editor export shape: {id, type, position, data: {label, config}}
        editor_data = data.pop("data", None)
        data.pop("position", None)
        if isinstance(editor_data, dict):
            data.setdefault("label", editor_data.get("label") or "")
            data.setdefault("config", editor_data.get("config") or {})

        node_type = str(data.get("type", "")).strip()
        if not data.get("label"):
            data["label"] = node_type

        raw_config = data.get("config")
        if raw_config is None:
            raw_config = {}
            data["config"] = raw_config

        config_model = NODE_CONFIG_MODELS.get(node_type)
        if config_model is not None and not isinstance(raw_config, config_model):
            data["config"] = config_model.model_validate(raw_config)
        return data


class FlowEdge(BaseModel):
    """Directed edge. `branch_selector` mirrors the editor's `sourceHandle`."""
    model_config = {"frozen": True}

    id: str | None = Field(default=None)
    source: str
    target: str
    branch_selector: str | None = Field(
        default=None,
        validation_alias=AliasChoices("branch_selector", "branchSelector", "sourceHandle"),
    )
    label: str | None = Field(default=None)


class FlowDefinition(BaseModel):
    """Read-only flow graph. Traversal is by id lookup over flat collections."""
    model_config = {"frozen": True}

    id: str = Field(default="")
    name: str = Field(default="")
    description: str = Field(default="")
    department: str | None = Field(default=None)
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)

    _nodes_by_id: dict[str, FlowNode] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def validate_graph(self) -> "FlowDefinition":
        node_ids = [node.id.strip() for node in self.nodes]
        if any(not node_id for node_id in node_ids):
            raise ValueError("Flow nodes must use non-empty ids")

        if len(set(node_ids)) != len(node_ids):
            raise ValueError("Flow node ids must be unique")

        node_id_set = set(node_ids)
        for edge in self.edges:
            if edge.source not in node_id_set:
                raise ValueError(f"Edge source '{edge.source}' not found in nodes")
            if edge.target not in node_id_set:
                raise ValueError(f"Edge target '{edge.target}' not found in nodes")

        start_ids = [node.id for node in self.nodes if node.type == "start"]
        if len(start_ids) > 1:
            raise ValueError(f"Flow must declare a single start node, found: {start_ids}")
        if start_ids and any(edge.target == start_ids[0] for edge in self.edges):
            raise ValueError("Start node must not have incoming edges")

        return self

    def model_post_init(self, __context: Any) -> None:
        self._nodes_by_id = {node.id: node for node in self.nodes}

    def get_node(self, node_id: str | None) -> FlowNode | None:
        if node_id is None:
            return None
        return self._nodes_by_id.get(node_id)

    def start_node(self) -> FlowNode | None:
        for node in self.nodes:
            if node.type == "start":
                return node
        return None

    def outgoing_edges(self, node_id: str) -> list[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]


# ─── Run configuration ─────────────────────────────────────────

class RunConfig(BaseModel):
    """Per-run settings supplied by the test harness or channel adapter."""
    model_config = {"frozen": True, "populate_by_name": True}

    use_real_integrations: bool = Field(
        default=False,
        validation_alias=AliasChoices("use_real_integrations", "useRealIntegrations", "testRealIntegrations"),
    )
    contact_name: str = Field(
        default="Cliente Teste",
        validation_alias=AliasChoices("contact_name", "contactName"),
    )
    contact_phone: str = Field(
        default="+5548999999999",
        validation_alias=AliasChoices("contact_phone", "contactPhone"),
    )
    effect_failure_policy: EffectFailurePolicy = Field(
        default="continue",
        description="'continue' records gateway failures and proceeds; 'halt' moves the run to error",
    )
    unmatched_branch_policy: UnmatchedBranchPolicy = Field(
        default="first_edge",
        description="'first_edge' falls back to the first available edge; 'wait' asks again",
    )
    step_delay_seconds: float = Field(default=0.0, ge=0.0, description="Cosmetic pacing between nodes")
