"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Orchestration loop limits and tool-dispatch policy."""

    max_tool_call_depth: int = Field(
        default=5,
        ge=1,
        description="Maximum request -> tool-dispatch rounds in one top-level call. "
                    "Reaching it raises DepthExceeded.",
    )
    max_retry: int = Field(
        default=3, ge=1, description="Backend call attempts before BackendUnavailable"
    )
    retry_backoff_base_ms: int = Field(
        default=500,
        ge=0,
        description="Linear backoff unit: attempt N waits base * N milliseconds",
    )
    remote_tool_timeout_s: float = Field(
        default=30.0, ge=0, description="Timeout for a single remote tool call"
    )
    abort_on_local_tool_error: bool = Field(
        default=False,
        description="If True, a failing local handler aborts the loop with "
                    "ToolExecutionFailed. If False, the error is returned to the "
                    "model as the tool result.",
    )
    skip_unknown_tools: bool = Field(
        default=False,
        description="Compatibility mode: drop tool calls naming unregistered tools "
                    "instead of raising ToolNotFound.",
    )

    model_config = SettingsConfigDict(env_prefix="AGENT_")


class LLMSettings(BaseSettings):
    """LLM API configuration."""

    model: str = Field(
        default="openai/gpt-4o-mini",
        description="LiteLLM model string, e.g. 'anthropic/claude-3-5-sonnet-20241022', "
                    "'openai/gpt-4o', 'gemini/gemini-2.0-flash', 'ollama/llama3'. The "
                    "provider prefix tells LiteLLM which API to route the request to.",
    )
    max_tokens: int = Field(default=1024, description="Maximum tokens in response")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    api_base: str | None = Field(
        default=None,
        description="Override the provider endpoint (OpenAI-compatible gateways)",
    )
    assistant_filler: str | None = Field(
        default=None,
        description="Content sent for assistant turns that only carry tool calls, for "
                    "providers that reject empty assistant content. None sends null.",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class MCPSettings(BaseSettings):
    """Remote tool server (MCP) configuration."""

    server_url: str | None = Field(
        default=None, description="SSE endpoint of an MCP server, e.g. http://localhost:8080/sse"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra HTTP headers for the SSE connection"
    )
    command: str | None = Field(
        default=None, description="Executable for a stdio MCP server (used when no URL is set)"
    )
    args: list[str] = Field(default_factory=list, description="Arguments for the stdio server")
    connect_timeout_s: float = Field(default=10.0, description="Connect + handshake timeout")
    list_timeout_s: float = Field(default=5.0, description="Tool listing timeout")

    model_config = SettingsConfigDict(env_prefix="MCP_")


class Settings(BaseSettings):
    """Main application settings."""

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    agent: AgentSettings = Field(default_factory=AgentSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
