"""
Agent layer.

The Agent owns conversation state, the tool registry and the structured-output
target, and drives the bounded request / tool-dispatch loop.
"""

from sapiens.agent.core import Agent
from sapiens.llm.models import AgentResponse

__all__ = ["Agent", "AgentResponse"]
