from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import allure
import pytest

from skill_worker.orchestrator.backend import (
    AgentRunError,
    AgentRunRequest,
    CliAgentBackend,
    resolve_agent,
)
from skill_worker.orchestrator.backend.cli_backend import TIMEOUT_EXIT_CODE

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("CLI Agent Invocation"),
]


def _request(tmp_path: Path, *, timeout_seconds: int = 30, max_output_bytes: int = 1_000_000):
    prompt_path = tmp_path / ".prompt.md"
    prompt_path.write_text("# CONTEXT\n\nhello", "utf-8")
    return AgentRunRequest(
        agent="claude-code",
        prompt_path=prompt_path,
        workdir=tmp_path,
        timeout_seconds=timeout_seconds,
        max_output_bytes=max_output_bytes,
    )


def test_resolve_agent_builds_default_invocations() -> None:
    claude = resolve_agent("claude-code")
    gemini = resolve_agent("GEMINI-CLI")

    assert claude.argv == (
        "claude",
        "--output-format",
        "json",
        "--dangerously-skip-permissions",
    )
    assert gemini.argv == ("gemini", "--output-format", "json")
    assert gemini.selector == "gemini-cli"


def test_resolve_agent_falls_back_to_default_for_unknown_selector() -> None:
    variant = resolve_agent("codex", default_agent="gemini-cli")

    assert variant.selector == "gemini-cli"
    assert variant.executable == "gemini"


def test_resolve_agent_applies_command_override() -> None:
    variant = resolve_agent(
        "claude-code",
        command_overrides={"claude-code": "/opt/bin/claude --output-format json"},
    )

    assert variant.argv == ("/opt/bin/claude", "--output-format", "json")
    assert variant.selector == "claude-code"


def test_resolve_agent_rejects_empty_override() -> None:
    with pytest.raises(AgentRunError) as excinfo:
        resolve_agent("claude-code", command_overrides={"claude-code": "   "})

    assert excinfo.value.transient is False


def test_run_feeds_prompt_on_stdin_and_captures_stdout(
    tmp_path: Path,
    echo_command: Callable[..., str],
) -> None:
    backend = CliAgentBackend(command_overrides={"claude-code": echo_command("--write", "x")})

    result = backend.run(_request(tmp_path))

    assert result.ok
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["prompt_chars"] == len("# CONTEXT\n\nhello")
    assert payload["has_context"] is True
    assert (tmp_path / "x").exists()


def test_run_keeps_output_of_failed_agent(
    tmp_path: Path,
    echo_command: Callable[..., str],
) -> None:
    backend = CliAgentBackend(
        command_overrides={
            "claude-code": echo_command("--silent", "--exit-code", "3", "--stderr", "bad input"),
        },
    )

    result = backend.run(_request(tmp_path))

    assert not result.ok
    assert result.exit_code == 3
    assert result.stdout == ""
    assert "bad input" in result.stderr


def test_run_terminates_agent_on_timeout(
    tmp_path: Path,
    echo_command: Callable[..., str],
) -> None:
    backend = CliAgentBackend(command_overrides={"claude-code": echo_command("--sleep", "30")})

    result = backend.run(_request(tmp_path, timeout_seconds=1))

    assert result.timed_out
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert not result.ok
    assert result.duration_seconds < 20


def test_run_stops_agent_over_output_limit(
    tmp_path: Path,
    echo_command: Callable[..., str],
) -> None:
    backend = CliAgentBackend(
        command_overrides={
            "claude-code": echo_command("--flood-bytes", "4000000", "--sleep", "30"),
        },
    )

    result = backend.run(_request(tmp_path, max_output_bytes=100_000))

    assert result.output_limit_exceeded
    assert not result.ok
    assert len(result.stdout) <= 100_000


def test_run_raises_for_missing_executable(tmp_path: Path) -> None:
    backend = CliAgentBackend(
        command_overrides={"claude-code": "definitely-not-an-agent-binary --json"},
    )

    with pytest.raises(AgentRunError, match="not found") as excinfo:
        backend.run(_request(tmp_path))

    assert excinfo.value.transient is False
