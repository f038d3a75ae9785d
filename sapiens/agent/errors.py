"""
Agent error taxonomy.

Everything the orchestration loop raises derives from AgentError, so callers can
catch the whole family, or single out DepthExceeded to tell a runaway tool
chain apart from a genuine failure.
"""


class AgentError(Exception):
    """Base class for orchestration failures."""


class BackendUnavailable(AgentError):
    """The backend call kept failing after every retry."""

    def __init__(self, attempts: int, message: str):
        super().__init__(f"Backend unavailable after {attempts} attempt(s): {message}")
        self.attempts = attempts


class DepthExceeded(AgentError):
    """The model kept requesting tools past the configured recursion depth."""

    def __init__(self, depth: int):
        super().__init__(f"Tool-call depth limit reached ({depth} rounds)")
        self.depth = depth


class ToolNotFound(AgentError, LookupError):
    """A tool name matches neither a local nor a remote tool."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is not registered")
        self.name = name


class DuplicateToolName(AgentError, ValueError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


class ToolExecutionFailed(AgentError):
    """A local handler or a remote tool call failed."""

    def __init__(self, name: str, message: str):
        super().__init__(f"Tool '{name}' failed: {message}")
        self.name = name
        self.reason = message


class ArgumentDecodeFailed(AgentError, ValueError):
    """Tool-call arguments could not be decoded into a parameter map."""

    def __init__(self, name: str, raw: str, message: str):
        super().__init__(f"Invalid arguments for tool '{name}': {message}")
        self.name = name
        self.raw = raw


class StructuredParseFailed(AgentError, ValueError):
    """
    Model output could not be parsed into the structured schema.

    Recoverable: the agent downgrades to plain-text content instead of raising it.
    """


class Cancelled(AgentError):
    """The caller cancelled the run. History appended so far is kept."""
