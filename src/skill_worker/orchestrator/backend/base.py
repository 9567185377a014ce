"""Backend interface for agent invocation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to run one agent invocation."""

    agent: str
    prompt_path: Path
    workdir: Path
    timeout_seconds: int
    max_output_bytes: int


@dataclass(slots=True)
class AgentRunResult:
    """Normalized execution outcome of an agent process."""

    agent: str
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False
    output_limit_exceeded: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.output_limit_exceeded


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        """Run the agent and return captured output."""
