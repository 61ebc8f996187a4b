"""Example: research pipeline with a fan-out and a validation decision.

Agents here are plain functions, so the example runs without an LLM.
Swap them for objects with ``arun``/``run`` to drive real agents.
"""

import asyncio
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from loguru import logger

from agentflow.graph import AgentRegistryExecutor, DAGBuilder, DAGExecutor, FlowType, NodeType
from agentflow.logging_config import log_metrics, setup_rich_logging
from agentflow.settings import Settings
from agentflow.telemetry import initialize_telemetry


def build_pipeline():
    """
    Pipeline:
    1. Plan the research
    2. Search the web and the paper index (fan-out)
    3. Draft a report from both (convergence)
    4. Validate: publish on success, revise on failure
    """
    return (
        DAGBuilder("research_pipeline", "Research Pipeline", "Plan, search, draft and validate")
        .entry()
        .node("plan", "Planner")
        .node("web", "WebSearcher", NodeType.TOOL_AGENT)
        .node("papers", "PaperSearcher", NodeType.TOOL_AGENT)
        .node("draft", "Writer")
        .node("validate", "Validator")
        .node("publish", "Publisher")
        .node("revise", "Reviser")
        .exit()
        .edge("entry", "plan")
        .edge("plan", "web", FlowType.EXECUTE_AGENTS)
        .edge("plan", "papers", FlowType.EXECUTE_AGENTS)
        .edge("web", "draft", FlowType.LLM_CALL)
        .edge("papers", "draft", FlowType.LLM_CALL)
        .edge("draft", "validate", FlowType.VALIDATION)
        .edge("validate", "publish", FlowType.AUTONOMOUS_DECISION, condition="success===true")
        .edge("validate", "revise", FlowType.AUTONOMOUS_DECISION, condition="success===false")
        .edge("publish", "exit")
        .edge("revise", "exit")
        .build()
    )


def build_agents(min_sources: int):
    def plan(agent_input):
        topic = agent_input["context"]["input"]
        return {"queries": [f"{topic} overview", f"{topic} recent results"]}

    def web(agent_input):
        return {"web_hits": [f"https://example.org/{q.replace(' ', '-')}" for q in agent_input["context"]["queries"]]}

    async def papers(agent_input):
        await asyncio.sleep(0)
        return {"paper_hits": ["arXiv:2401.00001"]}

    def draft(agent_input):
        ctx = agent_input["context"]
        sources = ctx.get("web_hits", []) + ctx.get("paper_hits", [])
        return {"draft": f"Report on {ctx['input']} citing {len(sources)} sources", "source_count": len(sources)}

    def validate(agent_input):
        count = agent_input["context"]["source_count"]
        return {"success": count >= min_sources, "checked": count}

    def publish(agent_input):
        return {"published": True, "from": [m["from_node"] for m in agent_input["inbox"]]}

    def revise(agent_input):
        return {"published": False, "todo": "find more sources"}

    return AgentRegistryExecutor({
        "Planner": plan,
        "WebSearcher": web,
        "PaperSearcher": papers,
        "Writer": draft,
        "Validator": validate,
        "Publisher": publish,
        "Reviser": revise,
    })


async def run_example(min_sources: int):
    settings = Settings()
    dag = build_pipeline()
    print("\n" + dag.visualize())

    executor = DAGExecutor(dag, build_agents(min_sources), settings=settings)
    initialize_telemetry(settings=settings).attach(executor.emitter)

    result = await executor.execute({"input": "tidal energy"})

    print(f"\n📊 Execution Results (min_sources={min_sources}):")
    print(f"  Status: {'success' if result.success else 'failed'}")
    print(f"  Path: {' → '.join(result.executed_nodes)}")
    print(f"  Pruned: {result.pruned_nodes}")
    print(f"  Final output: {result.final_context.get('exit')}")
    log_metrics(result.statistics().to_dict(), title="Node Statistics")


if __name__ == "__main__":
    setup_rich_logging(level="INFO")
    logger.info("Running research pipeline twice: once passing validation, once failing it")

    asyncio.run(run_example(min_sources=2))
    asyncio.run(run_example(min_sources=10))
