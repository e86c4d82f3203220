"""
Flow Library - Built-in flow templates and flow file loading.

Templates use the editor export shape ({id, type, data: {label, config}})
so they can be imported by the visual builder unchanged.
"""

import json
from pathlib import Path
from typing import Any

from shared.flow_contracts import FlowDefinition


def _node(node_id: str, node_type: str, label: str, config: dict[str, Any]) -> dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": {"label": label, "config": config}}


def _edge(edge_id: str, source: str, target: str, handle: str | None = None) -> dict[str, Any]:
    edge = {"id": edge_id, "source": source, "target": target}
    if handle:
        edge["sourceHandle"] = handle
    return edge


FLOW_TEMPLATES: dict[str, dict[str, Any]] = {
    "confirmacao-imovel": {
        "id": "confirmacao-imovel",
        "name": "Confirmação de Imóvel",
        "description": "Confirma a disponibilidade do imóvel com o proprietário e atualiza o status no Vista.",
        "category": "confirmacao",
        "department": "marketing",
        "nodes": [
            _node("start-1", "start", "Início", {"trigger": "template_response"}),
            _node("message-1", "message", "Saudação", {
                "text": "Olá {{nome}}! Recebemos sua resposta. Poderia confirmar se o imóvel ainda está disponível?",
                "delay": 1,
                "useClientName": True,
            }),
            _node("condition-1", "condition", "Verificar Resposta", {
                "conditionType": "keyword",
                "branches": [
                    {"id": "no", "label": "Indisponível", "value": "no",
                     "keywords": ["não", "nao", "vendido", "alugado", "indisponível"]},
                    {"id": "yes", "label": "Disponível", "value": "yes",
                     "keywords": ["sim", "disponível", "ainda", "confirmo"]},
                ],
            }),
            _node("action-1", "action", "Atualizar Vista - Disponível", {
                "actionType": "update_vista",
                "vistaFields": {"propertyCode": "{{codigo_imovel}}", "status": "disponivel"},
            }),
            _node("action-2", "action", "Atualizar Vista - Indisponível", {
                "actionType": "update_vista",
                "vistaFields": {"propertyCode": "{{codigo_imovel}}", "status": "indisponivel"},
            }),
            _node("message-2", "message", "Confirmação Positiva", {
                "text": "Perfeito! Atualizamos o status do imóvel como disponível. Obrigada pela confirmação!",
            }),
            _node("message-3", "message", "Confirmação Negativa", {
                "text": "Entendido! Atualizamos o status do imóvel. Obrigada pela informação!",
            }),
            _node("end-1", "end", "Fim", {"message": "Tenha um ótimo dia!", "closeConversation": False}),
        ],
        "edges": [
            _edge("e1", "start-1", "message-1"),
            _edge("e2", "message-1", "condition-1"),
            _edge("e3", "condition-1", "action-1", "yes"),
            _edge("e4", "condition-1", "action-2", "no"),
            _edge("e5", "action-1", "message-2"),
            _edge("e6", "action-2", "message-3"),
            _edge("e7", "message-2", "end-1"),
            _edge("e8", "message-3", "end-1"),
        ],
    },
    "qualificacao-lead": {
        "id": "qualificacao-lead",
        "name": "Qualificação de Lead",
        "description": "Pergunta se o lead busca compra ou locação, registra o orçamento e direciona ao departamento.",
        "category": "qualificacao",
        "department": "marketing",
        "nodes": [
            _node("start-1", "start", "Início", {"trigger": "first_message"}),
            _node("message-1", "message", "Boas Vindas", {
                "text": "Olá {{nome}}! Seja bem-vindo(a) à nossa imobiliária!",
                "delay": 2,
            }),
            _node("condition-1", "condition", "Tipo de Interesse", {
                "conditionType": "keyword",
                "branches": [
                    {"id": "compra", "label": "Compra", "value": "compra",
                     "keywords": ["compra", "comprar", "adquirir", "investir", "investimento"]},
                    {"id": "locacao", "label": "Locação", "value": "locacao",
                     "keywords": ["aluguel", "alugar", "locação", "locacao"]},
                ],
            }),
            _node("input-1", "input", "Orçamento", {
                "prompt": "Qual o valor aproximado que você pretende investir?",
                "variableName": "orcamento",
                "expectedType": "currency",
            }),
            _node("action-1", "action", "Marcar Comprador", {
                "actionType": "set_variable",
                "variableName": "interesse",
                "variableValue": "compra",
            }),
            _node("action-2", "action", "Marcar Inquilino", {
                "actionType": "set_variable",
                "variableName": "interesse",
                "variableValue": "locacao",
            }),
            _node("escalation-1", "escalation", "Escalar para Vendas", {
                "department": "vendas",
                "priority": "medium",
                "reason": "Lead interessado em compra - qualificado automaticamente",
            }),
            _node("escalation-2", "escalation", "Escalar para Locação", {
                "department": "locacao",
                "priority": "medium",
                "reason": "Lead interessado em locação - qualificado automaticamente",
            }),
            _node("end-1", "end", "Fim", {
                "message": "Obrigado, {{nome}}! Um corretor vai falar com você em breve.",
            }),
        ],
        "edges": [
            _edge("e1", "start-1", "message-1"),
            _edge("e2", "message-1", "condition-1"),
            _edge("e3", "condition-1", "input-1", "branch-0"),
            _edge("e4", "condition-1", "action-2", "branch-1"),
            _edge("e5", "input-1", "action-1"),
            _edge("e6", "action-1", "escalation-1"),
            _edge("e7", "action-2", "escalation-2"),
            _edge("e8", "escalation-1", "end-1"),
            _edge("e9", "escalation-2", "end-1"),
        ],
    },
    "faq-automatico": {
        "id": "faq-automatico",
        "name": "FAQ Automático",
        "description": "Responde perguntas sobre horário e endereço e escala para humano quando não identifica a pergunta.",
        "category": "atendimento",
        "department": "administrativo",
        "nodes": [
            _node("start-1", "start", "Início", {
                "trigger": "keyword",
                "keywords": ["horário", "endereço", "telefone", "contato"],
            }),
            _node("condition-1", "condition", "Tipo de Pergunta", {
                "conditionType": "keyword",
                "branches": [
                    {"id": "horario", "label": "Horário", "value": "horario",
                     "keywords": ["horário", "horario", "hora", "funciona", "atendimento"]},
                    {"id": "endereco", "label": "Endereço", "value": "endereco",
                     "keywords": ["endereço", "endereco", "onde", "localização", "fica"]},
                    {"id": "outro", "label": "Outro", "value": "outro", "keywords": []},
                ],
            }),
            _node("message-1", "message", "Resposta Horário", {
                "text": "Nosso horário de atendimento: segunda a sexta, 9h às 18h; sábado, 9h às 13h.",
            }),
            _node("message-2", "message", "Resposta Endereço", {
                "text": "Nosso endereço: Rua Example, 123 - Centro.",
            }),
            _node("escalation-1", "escalation", "Escalar Atendimento", {
                "department": "administrativo",
                "priority": "low",
                "reason": "Pergunta não identificada pelo FAQ automático",
            }),
            _node("end-1", "end", "Fim", {"closeConversation": False}),
        ],
        "edges": [
            _edge("e0", "start-1", "condition-1"),
            _edge("e1", "condition-1", "escalation-1"),
            _edge("e2", "condition-1", "message-1", "horario"),
            _edge("e3", "condition-1", "message-2", "endereco"),
            _edge("e4", "message-1", "end-1"),
            _edge("e5", "message-2", "end-1"),
            _edge("e6", "escalation-1", "end-1"),
        ],
    },
    "agendamento-visita": {
        "id": "agendamento-visita",
        "name": "Agendamento de Visita",
        "description": "Inicia o agendamento de visita e escala para corretor com prioridade alta.",
        "category": "vendas",
        "department": "vendas",
        "nodes": [
            _node("start-1", "start", "Início", {
                "trigger": "keyword",
                "keywords": ["visita", "agendar", "ver", "conhecer"],
            }),
            _node("message-1", "message", "Confirmar Interesse", {
                "text": "Ótimo! Você gostaria de agendar uma visita ao imóvel?",
                "delay": 1,
            }),
            _node("input-1", "input", "Data Preferida", {
                "prompt": "Por favor, me informe qual dia e horário seria melhor para você.",
                "variableName": "data_visita",
            }),
            _node("delay-1", "delay", "Aguardar Corretor", {"duration": 5, "unit": "minutes"}),
            _node("escalation-1", "escalation", "Escalar para Corretor", {
                "department": "vendas",
                "priority": "high",
                "reason": "Cliente deseja agendar visita - prioridade alta",
            }),
        ],
        "edges": [
            _edge("e1", "start-1", "message-1"),
            _edge("e2", "message-1", "input-1"),
            _edge("e3", "input-1", "delay-1"),
            _edge("e4", "delay-1", "escalation-1"),
        ],
    },
}


def list_templates() -> list[dict[str, str]]:
    """Summary of the built-in templates."""
    return [
        {
            "id": template_id,
            "name": template["name"],
            "category": template["category"],
            "description": template["description"],
        }
        for template_id, template in FLOW_TEMPLATES.items()
    ]


def templates_by_category(category: str) -> list[str]:
    """Template ids in a category."""
    return [template_id for template_id, template in FLOW_TEMPLATES.items() if template["category"] == category]


def get_template(template_id: str) -> FlowDefinition:
    """Build the FlowDefinition for a built-in template."""
    template = FLOW_TEMPLATES.get(template_id)
    if template is None:
        raise KeyError(f"Unknown flow template: {template_id}")
    payload = {key: value for key, value in template.items() if key != "category"}
    return FlowDefinition.model_validate(payload)


def load_flow_file(path: str | Path) -> FlowDefinition:
    """Load a flow exported by the editor (JSON)."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Flow file must contain a JSON object")
    return FlowDefinition.model_validate(payload)
