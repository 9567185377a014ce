"""Normalization of captured agent output into a result document."""

from __future__ import annotations

import json
from typing import Any

from skill_worker.orchestrator.backend.base import AgentRunResult


def parse_agent_output(text: str) -> Any:
    """Return the decoded JSON document, or ``{"raw": text}`` when it is not JSON."""

    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return {"raw": text}


def failure_output_text(result: AgentRunResult) -> str:
    """Pick the most useful diagnostic text of a failed run."""

    if result.stdout.strip():
        return result.stdout
    if result.stderr.strip():
        return result.stderr
    if result.timed_out:
        return f"Agent {result.agent} timed out"
    if result.output_limit_exceeded:
        return f"Agent {result.agent} exceeded the output limit"
    return f"Agent {result.agent} exited with code {result.exit_code}"
