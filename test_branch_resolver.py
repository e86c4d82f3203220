from execution.branch_resolver import branch_keywords, branch_selectors, resolve_branch
from shared.flow_contracts import ConditionBranch


def _branches() -> list[ConditionBranch]:
    return [
        ConditionBranch(id="yes", label="Sim", keywords=["sim"]),
        ConditionBranch(id="no", label="Não", keywords=["não"]),
    ]


def test_resolve_branch_is_deterministic() -> None:
    branches = _branches()
    results = {resolve_branch("sim, pode ser", branches) for _ in range(20)}
    assert results == {0}


def test_resolve_branch_first_declared_wins_on_overlap() -> None:
    assert resolve_branch("sim ou não, tanto faz", _branches()) == 0
    assert resolve_branch("NÃO", _branches()) == 1


def test_resolve_branch_returns_none_without_match() -> None:
    assert resolve_branch("talvez", _branches()) is None
    assert resolve_branch("", _branches()) is None
    assert resolve_branch("sim", []) is None


def test_branch_keywords_default_to_value_and_label() -> None:
    branch = ConditionBranch(id="yes", label="Disponível", value="Yes")

    assert branch_keywords(branch) == ["yes", "disponível"]
    assert resolve_branch("Ainda está disponível", [branch]) == 0


def test_blank_keywords_never_match() -> None:
    blank = ConditionBranch(id="blank", label="Blank", keywords=["", "   "])
    other = ConditionBranch(id="other", label="Outro", keywords=["outro"])

    assert branch_keywords(blank) == []
    assert resolve_branch("qualquer coisa", [blank, other]) is None
    assert resolve_branch("outro assunto", [blank, other]) == 1


def test_explicit_empty_keywords_do_not_fall_back() -> None:
    branch = ConditionBranch(id="outro", label="Outro", value="outro", keywords=[])
    assert resolve_branch("outro", [branch]) is None


def test_branch_selectors_cover_positional_and_named_forms() -> None:
    branch = ConditionBranch(id="no", label="Não")
    assert branch_selectors(1, branch) == ("branch-1", "no", "branch-no", "source-1")
