"""agentflow: DAG execution engine for LLM and tool agents."""

__version__ = "0.1.0"
