"""Fleet MCP: coordinate Claude CLI executions across agents and projects."""

__version__ = "0.1.0"
