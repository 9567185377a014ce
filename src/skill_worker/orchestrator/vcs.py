"""Thin subprocess wrapper around the git CLI."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_DISPLAY_LIMIT = 100


class GitCommandError(RuntimeError):
    """Git command failed, timed out, or could not be started."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        command: list[str],
        exit_code: int | None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out


@dataclass(slots=True)
class GitCommandResult:
    """Captured output of a successful git command."""

    command: list[str]
    stdout: str
    stderr: str


class GitRunner:
    """Runs git commands with a per-command timeout and logs diagnostics on failure."""

    def __init__(
        self,
        *,
        timeout_seconds: int = 1_800,
        executable: str = "git",
        env: dict[str, str] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.executable = executable
        self.env = env

    def run(self, *args: str, cwd: Path | None = None, quiet: bool = False) -> GitCommandResult:
        """Run ``git <args>`` and raise `GitCommandError` on any failure."""

        command = [self.executable, *args]
        display = _display_command(command)
        if not quiet:
            logger.info("  $ %s", display)

        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        if self.env:
            env.update(self.env)

        try:
            completed = subprocess.run(  # noqa: S603
                command,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as error:
            stdout = _as_text(error.stdout)
            stderr = _as_text(error.stderr)
            _log_failure(display, f"timed out after {self.timeout_seconds}s", stdout, stderr)
            raise GitCommandError(
                f"Command timed out after {self.timeout_seconds}s: {display}",
                command=command,
                exit_code=None,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
            ) from error
        except OSError as error:
            _log_failure(display, str(error), "", "")
            raise GitCommandError(
                f"Command failed to start: {display}: {error}",
                command=command,
                exit_code=None,
            ) from error

        if completed.returncode != 0:
            _log_failure(
                display,
                f"exit code {completed.returncode}",
                completed.stdout,
                completed.stderr,
            )
            raise GitCommandError(
                f"Command failed with exit code {completed.returncode}: {display}",
                command=command,
                exit_code=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
            )
        return GitCommandResult(command=command, stdout=completed.stdout, stderr=completed.stderr)


def repo_name_from_url(repo_url: str) -> str:
    """Return the repository name: last path segment without a ``.git`` suffix."""

    trimmed = repo_url.strip().rstrip("/")
    tail = trimmed.rsplit("/", 1)[-1]
    if "/" not in trimmed and ":" in tail:
        tail = tail.rsplit(":", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    return tail


def _display_command(command: list[str]) -> str:
    text = " ".join(command)
    if len(text) > _DISPLAY_LIMIT:
        return text[:_DISPLAY_LIMIT] + "..."
    return text


def _log_failure(display: str, reason: str, stdout: str, stderr: str) -> None:
    logger.error("  [ERROR] Command failed (%s): %s", reason, display)
    if stderr:
        logger.error("  STDERR: %s", stderr.strip())
    if stdout:
        logger.error("  STDOUT: %s", stdout.strip())


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
