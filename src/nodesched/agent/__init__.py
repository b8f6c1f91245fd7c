"""Node agent access."""

from nodesched.agent.client import HttpAgentClient

__all__ = ["HttpAgentClient"]
