"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import IO

from skill_worker.config import DEFAULT_AGENT, SUPPORTED_AGENTS
from skill_worker.orchestrator.backend.base import AgentRunRequest, AgentRunResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_POLL_INTERVAL_SECONDS = 0.1


class AgentRunError(RuntimeError):
    """Agent process could not be started, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(frozen=True, slots=True)
class AgentVariant:
    """Invocation convention of one supported agent CLI."""

    selector: str
    argv: tuple[str, ...]
    output_format: str = "json"

    @property
    def executable(self) -> str:
        return self.argv[0]


AGENT_VARIANTS: dict[str, AgentVariant] = {
    "claude-code": AgentVariant(
        selector="claude-code",
        argv=("claude", "--output-format", "json", "--dangerously-skip-permissions"),
    ),
    "gemini-cli": AgentVariant(
        selector="gemini-cli",
        argv=("gemini", "--output-format", "json"),
    ),
}


def resolve_agent(
    selector: str | None,
    *,
    default_agent: str = DEFAULT_AGENT,
    command_overrides: dict[str, str] | None = None,
) -> AgentVariant:
    """Map an agent selector onto its variant; unknown selectors use the default."""

    normalized = (selector or default_agent).strip().lower()
    if normalized not in SUPPORTED_AGENTS:
        logger.warning(
            "  [WARN] Unknown agent %r, falling back to %s",
            selector,
            default_agent,
        )
        normalized = default_agent
    variant = AGENT_VARIANTS[normalized]
    override = (command_overrides or {}).get(normalized)
    if override is None:
        return variant
    argv = tuple(shlex.split(override))
    if not argv:
        raise AgentRunError(
            f"Command override for agent={normalized!r} is empty.",
            transient=False,
        )
    return AgentVariant(selector=normalized, argv=argv, output_format=variant.output_format)


class CliAgentBackend:
    """Run the selected agent CLI with the prompt document on standard input."""

    def __init__(
        self,
        *,
        default_agent: str = DEFAULT_AGENT,
        command_overrides: dict[str, str] | None = None,
    ) -> None:
        self.default_agent = default_agent
        self.command_overrides = dict(command_overrides or {})

    def variant_for(self, selector: str | None) -> AgentVariant:
        return resolve_agent(
            selector,
            default_agent=self.default_agent,
            command_overrides=self.command_overrides,
        )

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        variant = self.variant_for(request.agent)
        logger.info("  $ %s < %s", _display_command(variant.argv), request.prompt_path.name)

        with (
            TemporaryDirectory(prefix="skill-worker-agent-") as capture_dir,
            request.prompt_path.open("rb") as stdin_handle,
        ):
            stdout_path = Path(capture_dir) / "stdout.log"
            stderr_path = Path(capture_dir) / "stderr.log"
            with (
                stdout_path.open("wb") as stdout_handle,
                stderr_path.open("wb") as stderr_handle,
            ):
                try:
                    process = subprocess.Popen(  # noqa: S603
                        list(variant.argv),
                        cwd=str(request.workdir),
                        env=os.environ.copy(),
                        stdin=stdin_handle,
                        stdout=stdout_handle,
                        stderr=stderr_handle,
                    )
                except FileNotFoundError as error:
                    raise AgentRunError(
                        f"Agent command not found: {variant.executable}",
                        transient=False,
                    ) from error
                except OSError as error:
                    raise AgentRunError(
                        f"Agent failed to start: {error}",
                        transient=True,
                    ) from error

                exit_code, timed_out, limit_exceeded, elapsed = _wait_with_limits(
                    process=process,
                    timeout_seconds=request.timeout_seconds,
                    max_output_bytes=request.max_output_bytes,
                    handles=(stdout_handle, stderr_handle),
                )

            result = AgentRunResult(
                agent=variant.selector,
                exit_code=exit_code,
                stdout=_read_capped(stdout_path, request.max_output_bytes),
                stderr=_read_capped(stderr_path, request.max_output_bytes),
                timed_out=timed_out,
                output_limit_exceeded=limit_exceeded,
                duration_seconds=elapsed,
            )

        if not result.ok:
            _log_failed_run(result, timeout_seconds=request.timeout_seconds)
        return result


def _wait_with_limits(
    *,
    process: subprocess.Popen[bytes],
    timeout_seconds: int,
    max_output_bytes: int,
    handles: tuple[IO[bytes], ...],
) -> tuple[int, bool, bool, float]:
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        elapsed = time.monotonic() - start_monotonic
        if returncode is not None:
            return returncode, False, False, elapsed

        if elapsed >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True, False, time.monotonic() - start_monotonic

        if any(_handle_size(handle) > max_output_bytes for handle in handles):
            _terminate_process(process)
            returncode = process.returncode if process.returncode is not None else -1
            return returncode, False, True, time.monotonic() - start_monotonic

        time.sleep(_POLL_INTERVAL_SECONDS)


def _handle_size(handle: IO[bytes]) -> int:
    handle.flush()
    return os.fstat(handle.fileno()).st_size


def _read_capped(path: Path, max_output_bytes: int) -> str:
    with path.open("rb") as handle:
        data = handle.read(max_output_bytes)
    return data.decode("utf-8", errors="replace")


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _log_failed_run(result: AgentRunResult, *, timeout_seconds: int) -> None:
    if result.timed_out:
        logger.error("  [ERROR] Agent %s timed out after %ss", result.agent, timeout_seconds)
    elif result.output_limit_exceeded:
        logger.error("  [ERROR] Agent %s exceeded the output limit", result.agent)
    else:
        logger.error("  [ERROR] Agent %s exited with code %s", result.agent, result.exit_code)
    logger.error("  STDERR: %s", result.stderr.strip() or "none")
    logger.error("  STDOUT: %s", result.stdout.strip() or "none")


def _display_command(argv: tuple[str, ...]) -> str:
    text = shlex.join(argv)
    if len(text) > 100:
        return text[:100] + "..."
    return text
