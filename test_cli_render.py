from rich.console import Console

import main
from shared.models import ExecutionLogEntry, RunSnapshot


def _record_console(monkeypatch) -> Console:
    console = Console(record=True, width=200, color_system=None)
    monkeypatch.setattr(main, "console", console)
    return console


def test_render_log_lists_failed_entries(monkeypatch) -> None:
    console = _record_console(monkeypatch)
    snapshot = RunSnapshot(
        run_id="r1",
        status="error",
        execution_log=[
            ExecutionLogEntry(node_id="start", node_type="start", node_label="Início", action="Fluxo iniciado"),
            ExecutionLogEntry(
                node_id="hook",
                node_type="integration",
                node_label="Webhook",
                action="Erro na integração: webhook",
                output={"error": "timeout"},
                duration_ms=12.0,
                success=False,
            ),
        ],
    )

    main.render_log(snapshot)

    text = console.export_text()
    assert "Webhook (integration) -> Erro na integração: webhook [FALHA, 12.0ms]" in text
    assert "Início (start) -> Fluxo iniciado" not in text
    assert "2 processados • 1 falhas" in text
