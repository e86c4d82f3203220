"""
External Effect Gateway — Controls access to side-effecting operations.

Responsibility:
- Resolve the implementation for (effect_type, mode) via EffectRegistry
- Execute it and normalize the outcome into an EffectResult

Prohibitions:
- No access to run state (variables, transcript, log)
- Never raises to the caller
"""

import inspect
import logging
from typing import Any

import httpx

from effects.http_effects import HttpIntegrationEffect, VistaUpdateEffect
from effects.mock_effects import MockIntegration, MockVistaUpdate
from effects.registry import EffectRegistry
from shared.models import EffectMode, EffectResult

logger = logging.getLogger(__name__)

UPDATE_VISTA = "update_vista"
INTEGRATION = "integration"


class ExternalEffectGateway:
    """Dual-mode (mock/real) request/response boundary for node side effects."""

    def __init__(self, effect_registry: EffectRegistry):
        self.effect_registry = effect_registry

    async def invoke(self, effect_type: str, payload: dict[str, Any], mode: EffectMode) -> EffectResult:
        """
        Execute an effect by type in the given mode.
        Returns an EffectResult; failures are reported in it, never raised.
        """
        implementation = self.effect_registry.resolve(effect_type, mode)
        if implementation is None:
            logger.warning("Effect not found: %s[%s]", effect_type, mode)
            return EffectResult(
                success=False,
                error=f"Efeito '{effect_type}' não registrado para o modo '{mode}'.",
            )

        try:
            raw = implementation.execute(payload)
            if inspect.isawaitable(raw):
                raw = await raw
            result = self._normalize_result(raw)
            if result.success:
                logger.info("Effect '%s' [%s] executed successfully", effect_type, mode)
            else:
                logger.warning("Effect '%s' [%s] failed: %s", effect_type, mode, result.error)
            return result
        except Exception as e:
            logger.exception("Effect '%s' [%s] execution failed", effect_type, mode)
            return EffectResult(success=False, error=f"Erro ao executar efeito: {e}")

    def _normalize_result(self, raw: Any) -> EffectResult:
        if isinstance(raw, EffectResult):
            return raw
        if isinstance(raw, dict) and "success" in raw:
            return EffectResult(
                success=bool(raw.get("success")),
                data=raw.get("data"),
                error=raw.get("error"),
            )
        if raw is None:
            return EffectResult(success=True)
        return EffectResult(success=True, data=raw)


def build_effect_gateway(
    *,
    vista_update_url: str = "",
    vista_auth_token: str | None = None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ExternalEffectGateway:
    """Gateway with the built-in mock and real implementations registered."""
    registry = EffectRegistry()
    registry.register(UPDATE_VISTA, "mock", MockVistaUpdate())
    registry.register(INTEGRATION, "mock", MockIntegration())
    registry.register(
        UPDATE_VISTA,
        "real",
        VistaUpdateEffect(url=vista_update_url, auth_token=vista_auth_token, timeout=timeout, transport=transport),
    )
    registry.register(INTEGRATION, "real", HttpIntegrationEffect(timeout=timeout, transport=transport))
    return ExternalEffectGateway(registry)
