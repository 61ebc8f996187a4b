"""Tests for the DAG executor."""

import asyncio

import pytest

from agentflow.graph import (
    AgentDAG,
    ConcurrentBranchStrategy,
    DAGBuilder,
    DAGExecutor,
    EventEmitter,
    EventType,
    FlowType,
    NodeType,
    SequentialBranchStrategy,
    get_branch_strategy,
)
from agentflow.settings import Settings


def _run(dag, node_executor, **kwargs):
    kwargs.setdefault("settings", Settings(_env_file=None))
    executor = DAGExecutor(dag, node_executor, **kwargs)
    return executor


@pytest.mark.asyncio
async def test_linear_dag(linear, recorder):
    node_executor = recorder({"a": {"summary": "facts"}, "b": "final report"})

    result = await _run(linear, node_executor).execute({"input": "topic"})

    assert result.success
    assert result.executed_nodes == ["entry", "a", "b", "exit"]
    assert result.final_context["summary"] == "facts"
    assert result.final_context["b"] == "final report"
    assert result.final_context["input"] == "topic"
    assert result.execution_id.startswith("exec_")
    assert [call["incoming_flow"] for call in node_executor.calls] == [
        FlowType.CONTEXT_PASS, FlowType.CONTEXT_PASS, FlowType.LLM_CALL, FlowType.CONTEXT_PASS,
    ]


@pytest.mark.asyncio
async def test_source_and_target_agents_are_passed(linear, recorder):
    node_executor = recorder()

    await _run(linear, node_executor).execute()

    calls = {call["node_id"]: call for call in node_executor.calls}
    assert calls["entry"]["source_agent_name"] == "UserInput"
    assert calls["a"]["source_agent_name"] == "UserInput"
    assert calls["b"]["source_agent_name"] == "Researcher"
    assert calls["a"]["target_agents"] == ["Writer"]
    assert calls["exit"]["agent_kind"] is NodeType.EXIT


@pytest.mark.asyncio
async def test_diamond_runs_join_once(diamond, recorder):
    node_executor = recorder()

    result = await _run(diamond, node_executor).execute()

    assert result.success
    assert result.executed_nodes.count("d") == 1
    assert sorted(result.executed_nodes) == sorted(["entry", "a", "b", "c", "d", "exit"])
    assert result.executed_nodes.index("d") > result.executed_nodes.index("b")
    assert result.executed_nodes.index("d") > result.executed_nodes.index("c")


@pytest.mark.asyncio
async def test_results_respect_topological_order(diamond, recorder):
    result = await _run(diamond, recorder()).execute()

    by_node = {r.node_id: r for r in result.node_results}
    for edge in diamond.edges:
        assert by_node[edge.to_node].timestamp >= by_node[edge.from_node].timestamp


@pytest.mark.asyncio
async def test_decision_prunes_false_branch(decision, recorder):
    node_executor = recorder({"x": {"success": True, "verdict": "publish"}})

    result = await _run(decision, node_executor).execute()

    assert result.success
    assert result.executed_nodes == ["entry", "x", "y", "w", "exit"]
    assert "z" not in node_executor.executed
    assert result.pruned_nodes == ["z"]
    assert result.stalled_nodes == []


@pytest.mark.asyncio
async def test_decision_takes_failure_branch(decision, recorder):
    node_executor = recorder({"x": {"success": False}})

    result = await _run(decision, node_executor).execute()

    assert result.executed_nodes == ["entry", "x", "z", "w", "exit"]
    assert result.pruned_nodes == ["y"]


@pytest.mark.asyncio
async def test_decision_output_key_named_after_node(recorder):
    dag = (
        DAGBuilder("review")
        .entry()
        .node("review", "Reviewer")
        .node("ok", "Publisher")
        .node("fix", "Fixer")
        .exit()
        .edge("entry", "review")
        .edge("review", "ok", FlowType.AUTONOMOUS_DECISION, condition="success===true")
        .edge("review", "fix", FlowType.AUTONOMOUS_DECISION, condition="success===false")
        .edge("ok", "exit")
        .edge("fix", "exit")
        .build()
    )
    node_executor = recorder({"review": {"review": "needs work", "success": False}})

    result = await _run(dag, node_executor).execute()

    assert result.executed_nodes == ["entry", "review", "fix", "exit"]
    assert result.pruned_nodes == ["ok"]
    assert result.final_context["review"] == {"review": "needs work", "success": False}


@pytest.mark.asyncio
async def test_decision_distributes_only_to_selected_targets(decision, recorder):
    node_executor = recorder({"x": {"success": True}})

    await _run(decision, node_executor).execute()

    x_call = next(call for call in node_executor.calls if call["node_id"] == "x")
    assert x_call["target_agents"] == []
    assert node_executor.distributions == [{
        "source_agent_name": "Judge",
        "target_agents": ["Publisher"],
        "result": {"success": True},
        "node_id": "x",
    }]


@pytest.mark.asyncio
async def test_three_way_fan_in(recorder):
    dag = (
        DAGBuilder("fan", "Fan")
        .entry()
        .node("hub")
        .node("l1")
        .node("l2")
        .node("l3")
        .node("final")
        .exit()
        .edge("entry", "hub")
        .edge("hub", "l1")
        .edge("hub", "l2")
        .edge("hub", "l3")
        .edge("l1", "final")
        .edge("l2", "final")
        .edge("l3", "final")
        .edge("final", "exit")
        .build()
    )

    result = await _run(dag, recorder()).execute()

    order = result.executed_nodes
    assert order.count("final") == 1
    assert all(order.index(leaf) < order.index("final") for leaf in ("l1", "l2", "l3"))
    assert order[-1] == "exit"


@pytest.mark.asyncio
async def test_node_failure_aborts_run(linear, recorder):
    node_executor = recorder({"a": RuntimeError("model unavailable")})

    result = await _run(linear, node_executor).execute()

    assert not result.success
    assert result.error_type == "NodeExecutionError"
    assert "model unavailable" in result.error
    assert result.executed_nodes == ["entry", "a"]
    assert result.get_node_result("entry").success
    failed = result.get_node_result("a")
    assert not failed.success
    assert failed.error == "model unavailable"
    assert "b" not in node_executor.executed


@pytest.mark.asyncio
async def test_scenario_entry_a_b_decision(recorder):
    dag = AgentDAG.from_dict({
        "id": "scenario",
        "name": "Scenario",
        "nodes": [
            {"id": "entry", "type": "entry", "agentName": "UserInput"},
            {"id": "A", "type": "agent", "agentName": "Planner"},
            {"id": "B", "type": "agent", "agentName": "Validator"},
            {"id": "C", "type": "agent", "agentName": "Publisher"},
            {"id": "D", "type": "agent", "agentName": "Reviser"},
            {"id": "exit", "type": "exit", "agentName": "Output"},
        ],
        "edges": [
            {"id": "e1", "from": "entry", "to": "A", "flowType": "context_pass"},
            {"id": "e2", "from": "A", "to": "B", "flowType": "llm_call"},
            {"id": "e3", "from": "B", "to": "C", "flowType": "autonomous_decision",
             "condition": "{\"type\": \"result\", \"expression\": \"success===true\"}"},
            {"id": "e4", "from": "B", "to": "D", "flowType": "autonomous_decision",
             "condition": "{\"type\": \"result\", \"expression\": \"success===false\"}"},
            {"id": "e5", "from": "C", "to": "exit", "flowType": "context_pass"},
            {"id": "e6", "from": "D", "to": "exit", "flowType": "context_pass"},
        ],
        "entryNode": "entry",
        "exitNodes": ["exit"],
    })
    node_executor = recorder({"B": "validation looks fine"})

    result = await _run(dag, node_executor).execute()

    assert result.success
    assert result.executed_nodes == ["entry", "A", "B", "C", "exit"]
    assert "D" not in node_executor.executed


@pytest.mark.asyncio
async def test_join_outside_fan_out_is_redriven(recorder):
    # "join" is itself a branch start, so no branch is its ancestor
    dag = (
        DAGBuilder("redrive")
        .entry()
        .node("join")
        .node("a")
        .node("b")
        .exit()
        .edge("entry", "join")
        .edge("entry", "a")
        .edge("entry", "b")
        .edge("a", "join")
        .edge("join", "exit")
        .edge("b", "exit")
        .build()
    )

    result = await _run(dag, recorder()).execute()

    assert result.success
    assert result.executed_nodes == ["entry", "a", "b", "join", "exit"]
    assert result.stalled_nodes == []


@pytest.mark.asyncio
async def test_stalled_node_raises_deadlock(recorder):
    dag = _stalling_dag()

    result = await _run(dag, recorder({"x": {"success": True}})).execute()

    assert not result.success
    assert result.error_type == "DAGDeadlockError"
    assert result.stalled_nodes == ["w"]
    assert "w" not in result.executed_nodes


@pytest.mark.asyncio
async def test_stall_is_a_warning_when_not_strict(recorder):
    dag = _stalling_dag()
    settings = Settings(_env_file=None, strict_liveness=False)

    result = await _run(dag, recorder({"x": {"success": True}}), settings=settings).execute()

    assert result.success
    assert result.stalled_nodes == ["w"]


def _stalling_dag() -> AgentDAG:
    # "w" waits on "orphan", which nothing can ever reach
    return (
        DAGBuilder("stall")
        .entry()
        .node("x")
        .node("orphan")
        .node("w")
        .exit()
        .edge("entry", "x")
        .edge("x", "w")
        .edge("orphan", "w")
        .edge("w", "exit")
        .build()
    )


@pytest.mark.asyncio
async def test_events_are_emitted_in_order(decision, recorder):
    emitter = EventEmitter()
    seen = []
    emitter.on_any(lambda event: seen.append((event.type, event.node_id)))

    result = await _run(decision, recorder({"x": {"success": True}}), emitter=emitter).execute()

    assert seen[0] == (EventType.EXECUTION_START, None)
    assert seen[-1] == (EventType.EXECUTION_COMPLETE, None)
    assert (EventType.NODE_START, "x") in seen
    assert seen.index((EventType.NODE_START, "y")) < seen.index((EventType.NODE_COMPLETE, "y"))
    assert all(event.execution_id == result.execution_id for event in emitter.get_history())


@pytest.mark.asyncio
async def test_fan_out_emits_parallel_events(diamond, recorder):
    emitter = EventEmitter()

    await _run(diamond, recorder(), emitter=emitter).execute()

    starts = emitter.get_history(EventType.PARALLEL_START)
    assert len(starts) == 1
    assert starts[0].node_id == "a"
    assert starts[0].data["branches"] == ["b", "c"]
    assert len(emitter.get_history(EventType.PARALLEL_COMPLETE)) == 1


@pytest.mark.asyncio
async def test_node_error_event(linear, recorder):
    emitter = EventEmitter()

    await _run(linear, recorder({"b": ValueError("bad")}), emitter=emitter).execute()

    errors = emitter.get_history(EventType.NODE_ERROR)
    assert [event.node_id for event in errors] == ["b"]
    assert emitter.get_history(EventType.EXECUTION_ERROR)[0].data["error_type"] == "NodeExecutionError"


@pytest.mark.asyncio
async def test_unknown_condition_emits_warning_event(recorder):
    dag = (
        DAGBuilder("warn")
        .entry()
        .node("x")
        .node("y")
        .exit()
        .edge("entry", "x")
        .edge("x", "y", FlowType.AUTONOMOUS_DECISION, condition="score > 0.9")
        .edge("y", "exit")
        .build()
    )
    emitter = EventEmitter()

    result = await _run(dag, recorder(), emitter=emitter).execute()

    assert result.success
    assert "y" in result.executed_nodes
    warnings = emitter.get_history(EventType.CONDITION_WARNING)
    assert len(warnings) == 1
    assert warnings[0].data["edge_id"] == "e2"


@pytest.mark.asyncio
async def test_predicate_condition(recorder):
    dag = (
        DAGBuilder("pred")
        .entry()
        .node("x")
        .node("long")
        .node("short")
        .exit()
        .edge("entry", "x")
        .edge("x", "long", FlowType.AUTONOMOUS_DECISION, condition="predicate:isLong")
        .edge("x", "short", FlowType.AUTONOMOUS_DECISION, condition="predicate:isShort")
        .edge("long", "exit")
        .edge("short", "exit")
        .build()
    )
    node_executor = recorder({"x": {"words": 1200}})
    executor = _run(dag, node_executor, predicates={"isLong": lambda ctx: ctx.get("words", 0) > 1000})
    executor.register_predicate("isShort", lambda ctx: ctx.get("words", 0) <= 1000)

    result = await executor.execute()

    assert result.executed_nodes == ["entry", "x", "long", "exit"]
    assert result.pruned_nodes == ["short"]


@pytest.mark.asyncio
async def test_executor_can_run_twice(diamond, recorder):
    executor = _run(diamond, recorder())

    first = await executor.execute()
    second = await executor.execute()

    assert first.executed_nodes == second.executed_nodes
    assert first.execution_id != second.execution_id


@pytest.mark.asyncio
async def test_concurrent_strategy_overlaps_branches(recorder):
    dag = (
        DAGBuilder("concurrent")
        .entry()
        .node("hub")
        .node("slow1")
        .node("slow2")
        .node("join")
        .exit()
        .edge("entry", "hub")
        .edge("hub", "slow1")
        .edge("hub", "slow2")
        .edge("slow1", "join")
        .edge("slow2", "join")
        .edge("join", "exit")
        .build()
    )
    running = {"now": 0, "peak": 0}

    class SlowExecutor(recorder):
        async def execute_node(self, node_id, *args):
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
            await asyncio.sleep(0.01)
            running["now"] -= 1
            return await super().execute_node(node_id, *args)

    result = await _run(dag, SlowExecutor(), branch_strategy=ConcurrentBranchStrategy()).execute()

    assert result.success
    assert running["peak"] == 2
    assert result.executed_nodes.count("join") == 1
    assert result.executed_nodes[-2:] == ["join", "exit"]


@pytest.mark.asyncio
async def test_concurrent_failure_cancels_other_branches(diamond, recorder):
    class DelayedExecutor(recorder):
        delays = {"b": 0.01, "c": 1.0}

        async def execute_node(self, node_id, *args):
            await asyncio.sleep(self.delays.get(node_id, 0))
            return await super().execute_node(node_id, *args)

    emitter = EventEmitter()
    executor = _run(
        diamond,
        DelayedExecutor({"b": RuntimeError("fail")}),
        emitter=emitter,
        branch_strategy=ConcurrentBranchStrategy(),
    )

    result = await executor.execute()

    assert not result.success
    assert result.error_type == "NodeExecutionError"
    assert "d" not in result.executed_nodes

    started = {event.node_id for event in emitter.get_history(EventType.NODE_START)}
    finished = {
        event.node_id
        for event in emitter.get_history(EventType.NODE_COMPLETE) + emitter.get_history(EventType.NODE_ERROR)
    }
    assert started == {"entry", "a", "b", "c"}
    assert finished == started

    cancelled = result.get_node_result("c")
    assert not cancelled.success
    assert cancelled.error == "cancelled"
    errors = {event.node_id: event.data for event in emitter.get_history(EventType.NODE_ERROR)}
    assert errors["c"]["cancelled"] is True
    assert errors["b"]["cancelled"] is False
    assert not executor._in_flight


def test_branch_strategy_lookup():
    assert isinstance(get_branch_strategy("sequential"), SequentialBranchStrategy)
    assert isinstance(get_branch_strategy("concurrent"), ConcurrentBranchStrategy)
    with pytest.raises(ValueError):
        get_branch_strategy("threads")


def test_strategy_comes_from_settings(diamond, recorder):
    executor = DAGExecutor(diamond, recorder(), settings=Settings(_env_file=None, branch_strategy="concurrent"))

    assert isinstance(executor.branch_strategy, ConcurrentBranchStrategy)
