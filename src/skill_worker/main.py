"""CLI entrypoint for skill-worker."""

import logging
from pathlib import Path

import redis
import rich_click as click

from skill_worker import __version__
from skill_worker.config import SUPPORTED_AGENTS
from skill_worker.orchestrator.controllers import (
    CheckCommand,
    EnqueueCommand,
    ProcessCommand,
    WorkerCliController,
    WorkerCommand,
)
from skill_worker.orchestrator.models import JobParseError
from skill_worker.orchestrator.toolchain import ToolchainUnavailableError

click.rich_click.USE_MARKDOWN = True
WORKER_CONTROLLER = WorkerCliController()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="skill-worker")
@click.option(
    "--log-level",
    envvar="SKILL_WORKER_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def skill_worker(log_level: str) -> None:
    """Queue-driven worker running skills through autonomous CLI agents."""

    logging.basicConfig(level=log_level.upper(), format=_LOG_FORMAT, force=True)


@skill_worker.command("run")
@click.option(
    "--repos-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Root directory for repository workspaces. Overrides REPOS_DIR.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many jobs (default: run forever).",
)
@click.option(
    "--skip-toolchain-check",
    is_flag=True,
    default=False,
    help="Do not probe the agent CLIs before entering the loop.",
)
def run(repos_dir: Path | None, max_jobs: int | None, skip_toolchain_check: bool) -> None:
    """Consume jobs from the work queue and publish results."""

    try:
        lines = WORKER_CONTROLLER.run_worker(
            WorkerCommand(
                repos_dir=repos_dir,
                max_jobs=max_jobs,
                skip_toolchain_check=skip_toolchain_check,
            ),
        )
    except ToolchainUnavailableError as error:
        raise click.ClickException(f"Exiting due to agent CLI issue: {error}") from error
    except redis.RedisError as error:
        raise click.ClickException(f"Broker unavailable: {error}") from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@skill_worker.command("check")
@click.option(
    "--agent",
    "agents",
    multiple=True,
    type=click.Choice(SUPPORTED_AGENTS, case_sensitive=False),
    help="Agent to probe. Can be repeated. Defaults to SKILL_WORKER_REQUIRED_AGENTS.",
)
def check(agents: tuple[str, ...]) -> None:
    """Verify that agent CLIs are installed and respond."""

    try:
        report = WORKER_CONTROLLER.check(
            CheckCommand(agents=tuple(agent.lower() for agent in agents)),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Agent toolchain check failed.")


@skill_worker.command("process")
@click.argument("job_file", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option(
    "--repos-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Root directory for repository workspaces. Overrides REPOS_DIR.",
)
def process(job_file: Path, repos_dir: Path | None) -> None:
    """Run one job from a JSON file without the broker and print its result."""

    try:
        report = WORKER_CONTROLLER.process_file(
            ProcessCommand(job_file=job_file, repos_dir=repos_dir),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(report.lines)
    if not report.success:
        raise SystemExit(1)


@skill_worker.command("enqueue")
@click.argument("job_file", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def enqueue(job_file: Path) -> None:
    """Validate a job JSON file and push it onto the work queue."""

    try:
        lines = WORKER_CONTROLLER.enqueue(EnqueueCommand(job_file=job_file))
    except JobParseError as error:
        raise click.ClickException(f"Invalid job: {error}") from error
    except redis.RedisError as error:
        raise click.ClickException(f"Broker unavailable: {error}") from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    skill_worker()
