import asyncio

from execution.flow_runner import MISSING_START_ERROR, FlowRunner
from execution.run_log_store import RunLogStore
from shared.flow_contracts import FlowDefinition, FlowNode, InputConfig, RunConfig
from shared.models import EffectResult


def _scenario_flow() -> FlowDefinition:
    return FlowDefinition(
        id="scenario",
        nodes=[
            {"id": "start", "type": "start"},
            {"id": "hello", "type": "message", "config": {"text": "Olá {{nome}}"}},
            {"id": "phone", "type": "input", "config": {"variableName": "telefone"}},
            {"id": "bye", "type": "end", "config": {"message": "Até mais!"}},
        ],
        edges=[
            {"source": "start", "target": "hello"},
            {"source": "hello", "target": "phone"},
            {"source": "phone", "target": "bye"},
        ],
    )


def _condition_flow(selectors: tuple[str | None, str | None] = ("branch-0", "branch-1")) -> FlowDefinition:
    return FlowDefinition(
        id="condition",
        nodes=[
            {"id": "start", "type": "start"},
            {
                "id": "ask",
                "type": "condition",
                "config": {
                    "branches": [
                        {"id": "yes", "label": "Sim", "keywords": ["sim"]},
                        {"id": "no", "label": "Não", "keywords": ["não"]},
                    ]
                },
            },
            {"id": "yes-msg", "type": "message", "config": {"text": "Ótimo"}},
            {"id": "no-msg", "type": "message", "config": {"text": "Que pena"}},
            {"id": "end", "type": "end"},
        ],
        edges=[
            {"source": "start", "target": "ask"},
            {"source": "ask", "target": "yes-msg", "sourceHandle": selectors[0]},
            {"source": "ask", "target": "no-msg", "sourceHandle": selectors[1]},
            {"source": "yes-msg", "target": "end"},
            {"source": "no-msg", "target": "end"},
        ],
    )


def _vista_flow(with_input: bool = False) -> FlowDefinition:
    nodes = [{"id": "start", "type": "start"}]
    edges = []
    previous = "start"
    if with_input:
        nodes.append({"id": "ask", "type": "input", "config": {"variableName": "resposta"}})
        edges.append({"source": previous, "target": "ask"})
        previous = "ask"
    nodes += [
        {"id": "vista", "type": "action", "config": {"actionType": "update_vista"}},
        {"id": "end", "type": "end"},
    ]
    edges += [{"source": previous, "target": "vista"}, {"source": "vista", "target": "end"}]
    return FlowDefinition(id="vista", nodes=nodes, edges=edges)


class _BlockingGateway:
    """Gateway whose calls stay in flight until `release` is set."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def invoke(self, effect_type, payload, mode):
        self.calls += 1
        await self.release.wait()
        return EffectResult(success=True, data={"message": "ok"})


async def _wait_for_call(gateway: _BlockingGateway) -> None:
    while gateway.calls == 0:
        await asyncio.sleep(0)


def test_scenario_transcript() -> None:
    async def _run() -> None:
        runner = FlowRunner(_scenario_flow(), config=RunConfig(contact_name="Cliente Teste"))

        snapshot = await runner.start()
        assert snapshot.status == "waiting_input"
        assert snapshot.current_node_id == "phone"
        assert [(m.type, m.content) for m in snapshot.messages] == [
            ("system", "Fluxo iniciado"),
            ("bot", "Olá Cliente Teste"),
            ("system", "Aguardando entrada: telefone"),
        ]

        snapshot = await runner.send_input("48999999999")
        assert snapshot.status == "completed"
        assert snapshot.variables["telefone"] == "48999999999"
        assert [(m.type, m.content) for m in snapshot.messages[3:]] == [
            ("user", "48999999999"),
            ("bot", "Até mais!"),
            ("system", "Fluxo concluído"),
        ]
        assert snapshot.visited_nodes == ["start", "hello", "phone", "bye"]
        assert runner.variables == snapshot.variables

    asyncio.run(_run())


def test_linear_flow_completes_in_one_start() -> None:
    async def _run() -> None:
        flow = FlowDefinition(
            id="linear",
            nodes=[
                {"id": "start", "type": "start"},
                {"id": "msg", "type": "message", "config": {"text": "Olá {{nome}}, tudo bem?"}},
                {"id": "end", "type": "end", "config": {"message": "Tchau {{nome}}"}},
            ],
            edges=[{"source": "start", "target": "msg"}, {"source": "msg", "target": "end"}],
        )
        runner = FlowRunner(flow, config=RunConfig(contact_name="Ana"))
        snapshot = await runner.start()

        assert snapshot.status == "completed"
        bot_messages = [(m.node_id, m.content) for m in snapshot.messages if m.type == "bot"]
        assert bot_messages == [("msg", "Olá Ana, tudo bem?"), ("end", "Tchau Ana")]
        assert snapshot.messages[-1].content == "Fluxo concluído"

    asyncio.run(_run())


def test_terminal_runs_only_log_visited_nodes() -> None:
    async def _run() -> None:
        runner = FlowRunner(_condition_flow())
        await runner.start()
        snapshot = await runner.send_input("não")

        assert snapshot.status in ("completed", "error")
        visited = set(snapshot.visited_nodes)
        assert visited <= {node.id for node in runner.flow.nodes}
        assert all(entry.node_id in visited for entry in snapshot.execution_log)
        assert len(snapshot.visited_nodes) == len(visited)

    asyncio.run(_run())


def test_condition_routes_by_positional_selector() -> None:
    async def _run() -> None:
        runner = FlowRunner(_condition_flow())
        snapshot = await runner.start()
        assert snapshot.messages[-1].content == "Condição: aguardando resposta para avaliar (keyword)"

        snapshot = await runner.send_input("Não, obrigado")

        assert "Branch selecionada: Não" in [m.content for m in snapshot.messages]
        assert "no-msg" in snapshot.visited_nodes
        assert "yes-msg" not in snapshot.visited_nodes
        assert snapshot.status == "completed"

    asyncio.run(_run())


def test_condition_routes_by_named_selector() -> None:
    async def _run() -> None:
        runner = FlowRunner(_condition_flow(selectors=("yes", "branch-no")))
        await runner.start()
        snapshot = await runner.send_input("sim, pode ser")

        assert "yes-msg" in snapshot.visited_nodes
        assert "no-msg" not in snapshot.visited_nodes

        runner.reset()
        await runner.start()
        snapshot = await runner.send_input("não")
        assert "no-msg" in snapshot.visited_nodes

    asyncio.run(_run())


def test_unmatched_answer_falls_back_to_first_edge() -> None:
    async def _run() -> None:
        runner = FlowRunner(_condition_flow())
        await runner.start()
        snapshot = await runner.send_input("talvez")

        assert "Nenhuma branch correspondente, usando primeira disponível" in [m.content for m in snapshot.messages]
        assert "yes-msg" in snapshot.visited_nodes
        assert snapshot.status == "completed"

    asyncio.run(_run())


def test_unmatched_answer_with_wait_policy_asks_again() -> None:
    async def _run() -> None:
        runner = FlowRunner(_condition_flow(), config=RunConfig(unmatched_branch_policy="wait"))
        await runner.start()

        snapshot = await runner.send_input("talvez")
        assert snapshot.status == "waiting_input"
        assert snapshot.current_node_id == "ask"
        assert snapshot.messages[-1].content == "Nenhuma branch correspondente, aguardando nova resposta"

        snapshot = await runner.send_input("não")
        assert snapshot.status == "completed"
        assert "no-msg" in snapshot.visited_nodes

    asyncio.run(_run())


def test_condition_without_outgoing_edges_keeps_waiting() -> None:
    async def _run() -> None:
        flow = FlowDefinition(
            nodes=[
                {"id": "start", "type": "start"},
                {"id": "ask", "type": "condition", "config": {"branches": [{"id": "yes", "keywords": ["sim"]}]}},
            ],
            edges=[{"source": "start", "target": "ask"}],
        )
        runner = FlowRunner(flow)
        await runner.start()
        snapshot = await runner.send_input("sim")

        assert snapshot.status == "waiting_input"
        assert snapshot.messages[-1].content == "Nenhuma saída disponível para a condição"

    asyncio.run(_run())


def test_missing_start_node_fails_run() -> None:
    async def _run() -> None:
        flow = FlowDefinition(nodes=[{"id": "msg", "type": "message", "config": {"text": "Oi"}}])
        runner = FlowRunner(flow)
        snapshot = await runner.start()

        assert snapshot.status == "error"
        assert snapshot.error == MISSING_START_ERROR
        assert [m.content for m in snapshot.messages] == [f"Erro: {MISSING_START_ERROR}"]
        assert snapshot.visited_nodes == []

    asyncio.run(_run())


def test_start_and_send_input_outside_their_states_are_ignored() -> None:
    async def _run() -> None:
        runner = FlowRunner(_scenario_flow())

        idle = await runner.send_input("cedo demais")
        assert idle.status == "idle"
        assert idle.messages == []

        first = await runner.start()
        again = await runner.start()
        assert again.messages == first.messages

        await runner.send_input("123")
        assert runner.status == "completed"
        late = await runner.send_input("tarde demais")
        assert [m.content for m in late.messages if m.type == "user"] == ["123"]

    asyncio.run(_run())


def test_reset_returns_to_idle_from_any_state() -> None:
    async def _run() -> None:
        runner = FlowRunner(_scenario_flow())

        for step in ("idle", "waiting_input", "completed"):
            if step in ("waiting_input", "completed"):
                await runner.start()
            if step == "completed":
                await runner.send_input("123")
            assert runner.status == step

            old_run_id = runner.run_id
            snapshot = runner.reset()
            assert snapshot.status == "idle"
            assert snapshot.messages == []
            assert snapshot.execution_log == []
            assert snapshot.variables == {}
            assert snapshot.visited_nodes == []
            assert snapshot.current_node_id is None
            assert snapshot.error is None
            assert runner.run_id != old_run_id

        snapshot = await runner.start()
        assert snapshot.status == "waiting_input"

    asyncio.run(_run())


def test_reset_while_running_discards_in_flight_work() -> None:
    async def _run() -> None:
        gateway = _BlockingGateway()
        runner = FlowRunner(_vista_flow(), gateway=gateway)

        task = asyncio.create_task(runner.start())
        await _wait_for_call(gateway)
        assert runner.status == "running"

        snapshot = runner.reset()
        assert snapshot.status == "idle"

        gateway.release.set()
        await task

        assert runner.status == "idle"
        assert runner.messages == []
        assert runner.execution_log == []
        assert runner.visited_nodes == []
        assert runner.variables == {}

        completed = await runner.start()
        assert completed.status == "completed"
        assert gateway.calls == 2

    asyncio.run(_run())


def test_input_during_processing_is_not_duplicated() -> None:
    async def _run() -> None:
        gateway = _BlockingGateway()
        runner = FlowRunner(_vista_flow(with_input=True), gateway=gateway)
        await runner.start()
        assert runner.status == "waiting_input"

        task = asyncio.create_task(runner.send_input("primeira"))
        await _wait_for_call(gateway)

        ignored = await runner.send_input("segunda")
        assert ignored.status == "running"

        gateway.release.set()
        snapshot = await task

        assert snapshot.status == "completed"
        assert gateway.calls == 1
        assert [m.content for m in snapshot.messages if m.type == "user"] == ["primeira"]
        assert [entry.node_id for entry in snapshot.execution_log].count("vista") == 1
        assert [m.content for m in snapshot.messages].count("ok") == 1

    asyncio.run(_run())


def test_runner_persists_run_and_log(tmp_path) -> None:
    async def _run() -> None:
        store = RunLogStore(db_path=str(tmp_path / "flow_runs.db"))
        try:
            runner = FlowRunner(_scenario_flow(), store=store)

            await runner.start()
            stored = store.get_run(runner.run_id)
            assert stored.status == "waiting_input"
            assert len(store.list_log_entries(runner.run_id)) == len(runner.execution_log)

            await runner.send_input("48999999999")
            stored = store.get_run(runner.run_id)
            assert stored.status == "completed"
            assert stored.variables["telefone"] == "48999999999"
            entries = store.list_log_entries(runner.run_id)
            assert [entry.action for entry in entries] == [entry.action for entry in runner.execution_log]
            assert [run.run_id for run in store.list_runs("scenario")] == [runner.run_id]
        finally:
            store.close()

    asyncio.run(_run())


def test_failure_while_binding_input_moves_run_to_error() -> None:
    async def _run() -> None:
        broken_input = InputConfig.model_construct(prompt="", variable_name=" ", expected_type="text")
        flow = FlowDefinition(
            id="broken-input",
            nodes=[
                FlowNode(id="start", type="start"),
                FlowNode(id="ask", type="input", label="Pergunta", config=broken_input),
                FlowNode(id="end", type="end"),
            ],
            edges=[{"source": "start", "target": "ask"}, {"source": "ask", "target": "end"}],
        )
        runner = FlowRunner(flow)
        await runner.start()
        assert runner.status == "waiting_input"

        snapshot = await runner.send_input("abc")

        assert snapshot.status == "error"
        assert snapshot.error == "Variable name must not be empty"
        failed = [entry for entry in snapshot.execution_log if not entry.success]
        assert [(entry.node_id, entry.action) for entry in failed] == [
            ("ask", "Erro: Variable name must not be empty")
        ]
        assert snapshot.messages[-1].content == "Erro no nó 'Pergunta': Variable name must not be empty"
        assert "end" not in snapshot.visited_nodes

        ignored = await runner.send_input("de novo")
        assert ignored.status == "error"

    asyncio.run(_run())


def test_matched_branch_without_selector_edge_takes_first_edge() -> None:
    async def _run() -> None:
        flow = FlowDefinition(
            id="legacy-handles",
            nodes=[
                {"id": "start", "type": "start"},
                {
                    "id": "ask",
                    "type": "condition",
                    "config": {"branches": [{"id": "yes", "label": "Sim", "keywords": ["sim"]}]},
                },
                {"id": "first", "type": "message", "config": {"text": "primeira saída"}},
                {"id": "plain", "type": "message", "config": {"text": "saída sem seletor"}},
            ],
            edges=[
                {"source": "start", "target": "ask"},
                {"source": "ask", "target": "first", "sourceHandle": "legacy-handle"},
                {"source": "ask", "target": "plain"},
            ],
        )
        runner = FlowRunner(flow)
        await runner.start()
        snapshot = await runner.send_input("sim")

        assert "Branch selecionada: Sim" in [m.content for m in snapshot.messages]
        assert "first" in snapshot.visited_nodes
        assert "plain" not in snapshot.visited_nodes

    asyncio.run(_run())
