"""Mock effects: deterministic, schema-stable payloads with no network access."""

from __future__ import annotations

from typing import Any

from shared.models import EffectResult

MOCK_VISTA_MESSAGE = "[MOCK] Imóvel atualizado com sucesso"


class MockVistaUpdate:
    """Stands in for the CRM property update while authoring flows."""

    async def execute(self, payload: dict[str, Any]) -> EffectResult:
        fields = {k: v for k, v in payload.items() if k != "codigo"}
        return EffectResult(
            success=True,
            data={
                "message": MOCK_VISTA_MESSAGE,
                "codigo": payload.get("codigo"),
                "campos_atualizados": fields,
            },
        )


class MockIntegration:
    """Echoes the request that a real integration call would have made."""

    async def execute(self, payload: dict[str, Any]) -> EffectResult:
        return EffectResult(
            success=True,
            data={
                "mock": True,
                "integration_type": payload.get("integration_type"),
                "url": payload.get("url"),
                "method": payload.get("method"),
            },
        )
