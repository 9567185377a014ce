"""Startup checks that the external agent CLIs are reachable."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass

from skill_worker.orchestrator.backend import AgentVariant

logger = logging.getLogger(__name__)


class ToolchainUnavailableError(RuntimeError):
    """At least one required agent CLI is missing or broken."""

    def __init__(self, message: str, *, results: list[ToolchainCheckResult]) -> None:
        super().__init__(message)
        self.results = results


@dataclass(slots=True)
class ToolchainCheckResult:
    """One agent probe result."""

    agent: str
    executable: str
    available: bool
    probe_ok: bool
    version: str
    error: str | None

    def render(self) -> str:
        return (
            f"agent={self.agent} executable={self.executable} "
            f"available={'yes' if self.available else 'no'} "
            f"probe={'ok' if self.probe_ok else 'failed'}"
            + (f" version={self.version}" if self.version else "")
            + (f" error={self.error}" if self.error else "")
        )


def check_toolchain(
    variants: Iterable[AgentVariant],
    *,
    timeout_seconds: int,
) -> list[ToolchainCheckResult]:
    """Probe every agent executable with ``--version`` (falling back to ``--help``)."""

    results: list[ToolchainCheckResult] = []
    for variant in variants:
        resolved_executable = shutil.which(variant.executable)
        if resolved_executable is None:
            results.append(
                ToolchainCheckResult(
                    agent=variant.selector,
                    executable=variant.executable,
                    available=False,
                    probe_ok=False,
                    version="",
                    error=f"Executable not found in PATH: {variant.executable}",
                ),
            )
            continue

        probe_ok, probe_error, version = _run_probe(
            executable=resolved_executable,
            timeout_seconds=timeout_seconds,
        )
        results.append(
            ToolchainCheckResult(
                agent=variant.selector,
                executable=variant.executable,
                available=True,
                probe_ok=probe_ok,
                version=version,
                error=(
                    f"{probe_error} (resolved executable: {resolved_executable})"
                    if probe_error is not None
                    else None
                ),
            ),
        )
    return results


def ensure_toolchain(
    variants: Iterable[AgentVariant],
    *,
    timeout_seconds: int,
) -> list[ToolchainCheckResult]:
    """Run `check_toolchain` and raise `ToolchainUnavailableError` on any failure."""

    results = check_toolchain(variants, timeout_seconds=timeout_seconds)
    for result in results:
        if result.probe_ok:
            logger.info("Agent CLI %s: %s", result.agent, result.version or "ok")
        else:
            logger.error("Agent CLI %s not available: %s", result.agent, result.error)
    failed = [result.agent for result in results if not result.probe_ok]
    if failed:
        raise ToolchainUnavailableError(
            f"Agent CLI not available or not authenticated: {', '.join(failed)}",
            results=results,
        )
    return results


def _run_probe(*, executable: str, timeout_seconds: int) -> tuple[bool, str | None, str]:
    error: str | None = "Probe command failed."
    for probe_args in ([executable, "--version"], [executable, "--help"]):
        try:
            completed = subprocess.run(  # noqa: S603
                probe_args,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return False, "Probe timed out.", ""
        except OSError as exc:
            return False, f"Probe failed to start: {exc}", ""

        if completed.returncode == 0:
            return True, None, _first_line(completed.stdout)
        error = f"Probe exit code={completed.returncode}: {_first_line(completed.stderr)}"

    return False, error, ""


def _first_line(value: str, *, limit: int = 120) -> str:
    for line in value.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped[:limit]
    return ""
