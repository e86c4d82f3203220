"""
Flow Runtime — Main CLI Entrypoint.

Wires configuration, the effect gateway and a FlowRunner, and runs the
interactive test session loop.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box

from effects.gateway import build_effect_gateway
from execution.flow_runner import FlowRunner
from execution.run_log_store import RunLogStore
from flows.templates import get_template, list_templates, load_flow_file
from shared.config import effect_settings_from_env, run_config_from_env, run_db_path_from_env
from shared.flow_contracts import FlowDefinition
from shared.models import RunSnapshot, TranscriptMessage
from shared.transcript_formatter import format_log_entry, format_transcript, summarize_log

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

LOG_LEVEL = logging.INFO
DEFAULT_TEMPLATE = "confirmacao-imovel"

# ─── Rich Console ───────────────────────────────────────────────

console = Console()

_MESSAGE_STYLES = {
    "bot": ("🤖 Bot", "cyan"),
    "user": ("👤 Você", "green"),
    "system": ("⚙️  Sistema", "dim"),
}

_STATUS_STYLES = {
    "idle": "dim",
    "running": "yellow",
    "waiting_input": "cyan",
    "completed": "green",
    "error": "red",
}


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _json_default(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


def load_flow(flow_path: str | None, template_id: str | None) -> FlowDefinition:
    if flow_path:
        return load_flow_file(flow_path)
    return get_template(template_id or DEFAULT_TEMPLATE)


def render_message(message: TranscriptMessage) -> None:
    title, style = _MESSAGE_STYLES.get(message.type, (message.type, "white"))
    if message.type == "system":
        console.print(Text(f"  {title}: {message.content}", style=style))
        return
    console.print(Text.from_markup(f"[bold {style}]{title}[/] → {message.content}"))


def render_status(snapshot: RunSnapshot) -> None:
    style = _STATUS_STYLES.get(snapshot.status, "white")
    line = f"[{style}]status: {snapshot.status}[/]"
    if snapshot.current_node_id:
        line += f" [dim]• nó: {snapshot.current_node_id}[/dim]"
    if snapshot.error:
        line += f" [bold red]• erro: {snapshot.error}[/]"
    console.print(line)


def render_log(snapshot: RunSnapshot) -> None:
    """Show the execution log as a table."""
    table = Table(
        title="📋 Execution Log",
        box=box.SIMPLE_HEAVY,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", style="dim")
    table.add_column("Node", style="bold white")
    table.add_column("Type", style="magenta")
    table.add_column("Action", style="white")
    table.add_column("ms", justify="right", style="dim")
    table.add_column("OK", justify="center")

    for index, entry in enumerate(snapshot.execution_log, start=1):
        table.add_row(
            str(index),
            entry.node_label,
            entry.node_type,
            entry.action,
            f"{entry.duration_ms:.1f}",
            "[green]✓[/]" if entry.success else "[red]✗[/]",
        )
    console.print(table)

    for entry in snapshot.execution_log:
        if not entry.success:
            console.print(f"[red]{escape(format_log_entry(entry))}[/red]")

    summary = summarize_log(snapshot.execution_log)
    console.print(
        f"[dim]{summary['processed']} processados • {summary['failed']} falhas • "
        f"{summary['total_duration_ms']:.1f}ms[/dim]"
    )


def render_variables(snapshot: RunSnapshot) -> None:
    table = Table(title="🧮 Variáveis", box=box.MINIMAL, show_header=False, padding=(0, 1))
    table.add_column("Name", style="bold yellow")
    table.add_column("Value", style="white")
    for name, value in snapshot.variables.items():
        table.add_row(name, json.dumps(value, ensure_ascii=False, default=_json_default))
    console.print(table)


async def run_flow_loop(
    flow: FlowDefinition,
    *,
    use_real: bool | None = None,
    contact_name: str | None = None,
    contact_phone: str | None = None,
    db_path: str | None = None,
) -> None:
    """Interactive test session over one flow."""
    config = run_config_from_env(
        use_real_integrations=use_real,
        contact_name=contact_name,
        contact_phone=contact_phone,
    )
    settings = effect_settings_from_env()
    gateway = build_effect_gateway(
        vista_update_url=settings.vista_update_url,
        vista_auth_token=settings.vista_auth_token or None,
        timeout=settings.timeout_seconds,
    )
    store_path = db_path or run_db_path_from_env()
    store = RunLogStore(db_path=store_path) if store_path else None
    runner = FlowRunner(flow, config=config, gateway=gateway, store=store)

    mode = "real" if config.use_real_integrations else "mock"
    console.print(Panel(
        Text.from_markup(
            f"[bold cyan]{flow.name}[/bold cyan]\n"
            f"[dim]Flow: {flow.id} • Modo: {mode} • Contato: {config.contact_name}[/dim]\n"
            "[dim]Comandos: /log, /vars, /transcript, /reset, exit[/dim]"
        ),
        title="🧪 Flow Test",
        border_style="cyan",
        box=box.DOUBLE,
    ))

    shown = 0

    def show_new_messages(snapshot: RunSnapshot) -> int:
        for message in snapshot.messages[shown:]:
            render_message(message)
        return len(snapshot.messages)

    try:
        snapshot = await runner.start()
        shown = show_new_messages(snapshot)
        render_status(snapshot)

        while True:
            try:
                raw_input = console.input("[bold cyan]Você → [/]")
                command = raw_input.strip()

                if command.lower() in ("exit", "quit", "q"):
                    console.print("[dim]Até mais! 👋[/dim]")
                    break
                if not command:
                    continue

                if command == "/log":
                    render_log(runner.snapshot())
                    continue
                if command == "/vars":
                    render_variables(runner.snapshot())
                    continue
                if command == "/transcript":
                    console.print(escape(format_transcript(runner.messages)) or "[dim](vazio)[/dim]")
                    continue
                if command == "/reset":
                    runner.reset()
                    console.print("[yellow]Execução reiniciada.[/yellow]")
                    shown = 0
                    snapshot = await runner.start()
                    shown = show_new_messages(snapshot)
                    render_status(snapshot)
                    continue

                if runner.status != "waiting_input":
                    console.print(f"[dim]O fluxo não aguarda entrada (status: {runner.status}). Use /reset.[/dim]")
                    continue

                with console.status("[green]Processando...[/green]", spinner="dots"):
                    snapshot = await runner.send_input(raw_input)
                shown = show_new_messages(snapshot)
                render_status(snapshot)

            except KeyboardInterrupt:
                console.print("\n[dim]Interrompido. Até mais! 👋[/dim]")
                break
            except EOFError:
                console.print("\n[dim]Até mais! 👋[/dim]")
                break
    finally:
        if store:
            store.close()


def show_templates() -> None:
    table = Table(title="Flow Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold white")
    table.add_column("Category", style="magenta")
    table.add_column("Description", style="dim")
    for template in list_templates():
        table.add_row(template["id"], template["name"], template["category"], template["description"])
    console.print(table)


def main() -> None:
    """Entrypoint with CLI args."""
    setup_logging()

    parser = argparse.ArgumentParser(description="Flow Runtime")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run an interactive flow test session")
    source = run_parser.add_mutually_exclusive_group()
    source.add_argument("--flow", default=None, help="Path to a flow JSON exported by the editor")
    source.add_argument("--template", default=None, help=f"Built-in template id (default: {DEFAULT_TEMPLATE})")
    run_parser.add_argument("--real", action="store_true", default=None, help="Use real integrations")
    run_parser.add_argument("--contact-name", default=None, help="Contact name seeded as {{nome}}")
    run_parser.add_argument("--contact-phone", default=None, help="Contact phone seeded as {{telefone}}")
    run_parser.add_argument("--db", default=None, help="SQLite path for the run audit log")

    subparsers.add_parser("templates", help="List built-in flow templates")

    args = parser.parse_args()

    if args.command == "templates":
        show_templates()
    elif args.command == "run":
        try:
            flow = load_flow(args.flow, args.template)
        except (OSError, ValueError, KeyError, ValidationError) as e:
            console.print(f"[bold red]Failed to load flow:[/] {e}")
            sys.exit(1)
        try:
            asyncio.run(run_flow_loop(
                flow,
                use_real=args.real,
                contact_name=args.contact_name,
                contact_phone=args.contact_phone,
                db_path=args.db,
            ))
        except KeyboardInterrupt:
            pass
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
