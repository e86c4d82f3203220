"""
Effect Registry — Maps (effect_type, mode) → implementation.

Pure lookup, no logic.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from shared.models import EffectMode, EffectResult

logger = logging.getLogger(__name__)


class EffectImplementation(Protocol):
    """Protocol that all effect implementations must follow."""

    async def execute(self, payload: dict[str, Any]) -> EffectResult | dict[str, Any]:
        """Run the side effect.
        Must return an EffectResult or {"success": bool, "data": ...} / {"success": False, "error": "..."}
        """
        ...


class EffectRegistry:
    """Registry mapping effect types and modes to their implementations."""

    def __init__(self) -> None:
        self._effects: dict[tuple[str, EffectMode], EffectImplementation] = {}

    def register(self, effect_type: str, mode: EffectMode, implementation: EffectImplementation) -> None:
        """Register an effect implementation for one mode."""
        key = str(effect_type).strip()
        if not key:
            raise ValueError("effect_type must not be empty")
        logger.info("Registered effect: %s[%s] → %s", key, mode, type(implementation).__name__)
        self._effects[(key, mode)] = implementation

    def resolve(self, effect_type: str, mode: EffectMode) -> EffectImplementation | None:
        """Resolve an effect by type and mode. Returns None if not found."""
        return self._effects.get((effect_type, mode))

    @property
    def registered_effects(self) -> list[tuple[str, EffectMode]]:
        """List all registered (effect_type, mode) pairs."""
        return list(self._effects.keys())
