from datetime import datetime, timezone

from shared.models import ExecutionLogEntry, TranscriptMessage
from shared.transcript_formatter import format_log_entry, format_message, format_transcript, summarize_log


def _message(kind: str, content: str) -> TranscriptMessage:
    return TranscriptMessage(
        id=f"msg-{kind}",
        type=kind,
        content=content,
        timestamp=datetime(2024, 5, 1, 14, 30, 5, tzinfo=timezone.utc),
    )


def test_format_message_uses_role_prefix_and_clock() -> None:
    assert format_message(_message("bot", "Olá Ana")) == "[14:30:05] Bot: Olá Ana"
    assert format_message(_message("user", "sim")) == "[14:30:05] Você: sim"
    assert format_message(_message("system", "Fluxo iniciado")) == "[14:30:05] Sistema: Fluxo iniciado"


def test_format_transcript_can_hide_system_messages() -> None:
    messages = [
        _message("system", "Fluxo iniciado"),
        _message("bot", "Olá Ana"),
        _message("user", "sim"),
    ]

    assert format_transcript(messages).count("\n") == 2
    assert format_transcript(messages, include_system=False) == "[14:30:05] Bot: Olá Ana\n[14:30:05] Você: sim"
    assert format_transcript([]) == ""


def test_summarize_log_counts_failures_and_duration() -> None:
    entries = [
        ExecutionLogEntry(node_id="start", node_type="start", node_label="Início", action="Fluxo iniciado", duration_ms=0.5),
        ExecutionLogEntry(
            node_id="hook",
            node_type="integration",
            node_label="Webhook",
            action="Erro na integração: webhook",
            output={"error": "timeout"},
            duration_ms=12.0,
            success=False,
        ),
        ExecutionLogEntry(node_id="end", node_type="end", node_label="Fim", action="Fluxo finalizado", duration_ms=0.25),
    ]

    summary = summarize_log(entries)

    assert summary == {
        "processed": 3,
        "failed": 1,
        "failed_nodes": ["hook"],
        "total_duration_ms": 12.75,
        "by_type": {"start": 1, "integration": 1, "end": 1},
    }
    assert format_log_entry(entries[1]) == (
        'Webhook (integration) -> Erro na integração: webhook [FALHA, 12.0ms] {"error": "timeout"}'
    )
