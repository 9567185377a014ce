"""Controllers for skill-worker CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from skill_worker.config import BrokerSettings, Settings
from skill_worker.orchestrator.backend import AgentVariant, CliAgentBackend
from skill_worker.orchestrator.broker import RedisJobBroker
from skill_worker.orchestrator.lifecycle import JobController
from skill_worker.orchestrator.models import parse_job
from skill_worker.orchestrator.publisher import PersistencePublisher
from skill_worker.orchestrator.toolchain import check_toolchain, ensure_toolchain
from skill_worker.orchestrator.vcs import GitRunner
from skill_worker.orchestrator.worker import QueueWorker
from skill_worker.orchestrator.workspace import WorkspaceProvisioner


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for the queue loop."""

    repos_dir: Path | None
    max_jobs: int | None
    skip_toolchain_check: bool = False


@dataclass(slots=True)
class CheckCommand:
    """CLI input for the agent toolchain check."""

    agents: tuple[str, ...]


@dataclass(slots=True)
class ProcessCommand:
    """CLI input for running a single job file without the broker."""

    job_file: Path
    repos_dir: Path | None


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for pushing a job file onto the work queue."""

    job_file: Path


@dataclass(slots=True)
class CommandReport:
    """Lines to render plus overall status."""

    lines: list[str]
    success: bool


def build_job_controller(settings: Settings) -> JobController:
    """Wire the lifecycle controller from settings."""

    git = GitRunner(timeout_seconds=settings.workspace.git_timeout_seconds)
    settings.workspace.repos_dir.mkdir(parents=True, exist_ok=True)
    return JobController(
        provisioner=WorkspaceProvisioner(
            repos_dir=settings.workspace.repos_dir,
            scratch_root=settings.workspace.scratch_root,
            git=git,
            default_branches=settings.workspace.default_branches,
        ),
        backend=_backend(settings),
        publisher=PersistencePublisher(
            git=git,
            author_name=settings.workspace.git_author_name,
            author_email=settings.workspace.git_author_email,
        ),
        worker_name=settings.identity.worker_name,
        agent_timeout_seconds=settings.agent.timeout_seconds,
        max_output_bytes=settings.agent.max_output_bytes,
    )


class WorkerCliController:
    """Coordinates worker, check, and single-job CLI operations."""

    def __init__(
        self,
        *,
        broker_factory: Callable[[BrokerSettings], RedisJobBroker] = RedisJobBroker.from_settings,
    ) -> None:
        self.broker_factory = broker_factory

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(repos_dir=command.repos_dir)
        settings.validate()
        broker = self.broker_factory(settings.broker)
        try:
            broker.ping()
            if not command.skip_toolchain_check:
                ensure_toolchain(
                    _required_variants(settings),
                    timeout_seconds=settings.agent.probe_timeout_seconds,
                )
            worker = QueueWorker(
                broker=broker,
                controller=build_job_controller(settings),
                identity=settings.identity,
                error_delay_seconds=settings.broker.error_delay_seconds,
            )
            summary = worker.run_forever(max_jobs=command.max_jobs)
        finally:
            broker.close()

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} loop_errors={summary.loop_errors}",
        ]

    def check(self, command: CheckCommand) -> CommandReport:
        settings = Settings.from_env()
        settings.validate()
        backend = _backend(settings)
        agents = command.agents or settings.agent.required_agents
        results = check_toolchain(
            [backend.variant_for(agent) for agent in agents],
            timeout_seconds=settings.agent.probe_timeout_seconds,
        )
        success = all(result.probe_ok for result in results)
        lines = [result.render() for result in results]
        lines.append(f"Toolchain status: {'passed' if success else 'failed'}")
        return CommandReport(lines=lines, success=success)

    def process_file(self, command: ProcessCommand) -> CommandReport:
        settings = Settings.from_env(repos_dir=command.repos_dir)
        settings.validate()
        job = parse_job(command.job_file.read_text("utf-8"))
        result = build_job_controller(settings).process_job(job)
        payload = result.to_payload()
        payload.update({"jobId": job.id, "type": job.type, "metadata": job.metadata_payload()})
        return CommandReport(
            lines=[json.dumps(payload, ensure_ascii=False, indent=2, default=str)],
            success=result.success,
        )

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        raw = command.job_file.read_text("utf-8")
        job = parse_job(raw)
        broker = self.broker_factory(settings.broker)
        try:
            depth = broker.push_job(json.dumps(json.loads(raw), ensure_ascii=False))
        finally:
            broker.close()
        return [f"Job enqueued: id={job.id} type={job.type} queue_depth={depth}"]


def _backend(settings: Settings) -> CliAgentBackend:
    return CliAgentBackend(
        default_agent=settings.agent.default_agent,
        command_overrides=settings.agent.command_overrides(),
    )


def _required_variants(settings: Settings) -> list[AgentVariant]:
    backend = _backend(settings)
    return [backend.variant_for(agent) for agent in settings.agent.required_agents]
