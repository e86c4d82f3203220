"""Variable store and `{{name}}` interpolation for a single run."""

from __future__ import annotations

import re
from typing import Any

_TOKEN_PATTERN = re.compile(r"\{\{(\w+)\}\}")
_CONTACT_NAME_KEYS = ("nome", "name")
_YES_PATTERN = re.compile(r"(sim|s|yes|y|1)", re.IGNORECASE)
_EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_NUMBER_PREFIX = re.compile(r"\d+(?:\.\d+)?|\.\d+")


def stringify_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def has_unresolved_tokens(text: str) -> bool:
    return bool(_TOKEN_PATTERN.search(text or ""))


class VariableStore:
    """Mutable key -> scalar map accumulated during one run."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})

    def seed(self, *, contact_name: str, contact_phone: str) -> None:
        self._values["nome"] = contact_name
        self._values["telefone"] = contact_phone

    def set(self, name: str, value: Any) -> None:
        key = str(name).strip()
        if not key:
            raise ValueError("Variable name must not be empty")
        self._values[key] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def interpolate(self, text: str, *, contact_name: str | None = None) -> str:
        """Replace `{{name}}` tokens. Unknown tokens are left verbatim."""
        if not text:
            return text

        def repl(match: re.Match[str]) -> str:
            name = match.group(1)
            value = self._values.get(name)
            if name in _CONTACT_NAME_KEYS and value in (None, "") and contact_name:
                return contact_name
            if name in self._values:
                return stringify_value(value)
            return match.group(0)

        return _TOKEN_PATTERN.sub(repl, text)


def _parse_number_prefix(cleaned: str) -> float | None:
    match = _NUMBER_PREFIX.match(cleaned)
    if match is None:
        return None
    return float(match.group(0))


def _parse_number(raw: str) -> float:
    cleaned = re.sub(r"[^\d.,]", "", raw).replace(",", ".", 1)
    value = _parse_number_prefix(cleaned)
    return value if value is not None else 0.0


def _parse_currency(raw: str) -> float | str:
    cleaned = re.sub(r"[^\d.,]", "", raw)
    if "," in cleaned:
        # 1.200,50 -> 1200.50
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif cleaned.count(".") > 1 or re.fullmatch(r"\d{1,3}\.\d{3}", cleaned):
        cleaned = cleaned.replace(".", "")

    value = _parse_number_prefix(cleaned)
    if value is None:
        return raw

    lowered = raw.lower()
    if "milh" in lowered:
        value *= 1_000_000
    elif "mil" in lowered:
        value *= 1_000
    return value


def coerce_input(raw: str, expected_type: str) -> Any:
    """Light coercion of a free-text answer according to the input node type."""
    text = raw.strip()
    if expected_type == "number":
        return _parse_number(text)
    if expected_type == "currency":
        return _parse_currency(text)
    if expected_type == "yes_no":
        return bool(_YES_PATTERN.fullmatch(text))
    if expected_type == "email":
        match = _EMAIL_PATTERN.search(text)
        return match.group(0) if match else raw
    if expected_type == "phone":
        return re.sub(r"\D", "", text)
    return raw
