"""Agent backend implementations."""

from skill_worker.orchestrator.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from skill_worker.orchestrator.backend.cli_backend import (
    AGENT_VARIANTS,
    AgentRunError,
    AgentVariant,
    CliAgentBackend,
    resolve_agent,
)

__all__ = [
    "AGENT_VARIANTS",
    "AgentBackend",
    "AgentRunError",
    "AgentRunRequest",
    "AgentRunResult",
    "AgentVariant",
    "CliAgentBackend",
    "resolve_agent",
]
