"""
Runtime configuration from the environment.

Values are read at call time so a `.env` file or exported variables
apply to every run built afterwards.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from shared.flow_contracts import RunConfig

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class EffectSettings:
    vista_update_url: str
    vista_auth_token: str
    timeout_seconds: float


def run_config_from_env(**overrides) -> RunConfig:
    """Build a RunConfig from FLOW_* variables; keyword overrides win."""
    values = {
        "use_real_integrations": _env_flag("FLOW_USE_REAL_INTEGRATIONS", "false"),
        "contact_name": os.getenv("FLOW_CONTACT_NAME", "Cliente Teste").strip() or "Cliente Teste",
        "contact_phone": os.getenv("FLOW_CONTACT_PHONE", "+5548999999999").strip() or "+5548999999999",
        "effect_failure_policy": os.getenv("FLOW_EFFECT_FAILURE_POLICY", "continue").strip().lower(),
        "unmatched_branch_policy": os.getenv("FLOW_UNMATCHED_BRANCH_POLICY", "first_edge").strip().lower(),
        "step_delay_seconds": float(os.getenv("FLOW_STEP_DELAY_SECONDS", "0")),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return RunConfig(**values)


def effect_settings_from_env() -> EffectSettings:
    return EffectSettings(
        vista_update_url=os.getenv("VISTA_UPDATE_URL", "").strip(),
        vista_auth_token=os.getenv("VISTA_UPDATE_TOKEN", "").strip(),
        timeout_seconds=float(os.getenv("EFFECT_HTTP_TIMEOUT_SECONDS", "30")),
    )


def run_db_path_from_env() -> str:
    return os.getenv("FLOW_RUN_DB_PATH", "").strip()
