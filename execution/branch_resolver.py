"""
Branch Resolver: keyword routing for condition nodes.

Pure functions, no state. First matching branch in declaration order wins.
"""

from __future__ import annotations

from shared.flow_contracts import ConditionBranch


def branch_keywords(branch: ConditionBranch) -> list[str]:
    """Keywords for a branch, defaulting to its value and label."""
    keywords = branch.keywords if branch.keywords is not None else [branch.value, branch.label]
    return [kw.strip().lower() for kw in keywords if kw and kw.strip()]


def resolve_branch(text: str, branches: list[ConditionBranch]) -> int | None:
    """Return the index of the first branch whose keyword occurs in `text`."""
    lowered = (text or "").lower().strip()
    if not lowered:
        return None

    for index, branch in enumerate(branches):
        if any(keyword in lowered for keyword in branch_keywords(branch)):
            return index
    return None


def branch_selectors(index: int, branch: ConditionBranch) -> tuple[str, ...]:
    """Edge selectors that route a matched branch (positional or named)."""
    return (
        f"branch-{index}",
        branch.id,
        f"branch-{branch.id}",
        f"source-{index}",
    )
