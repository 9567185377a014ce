"""Job lifecycle controller: provision, prompt, invoke, persist, report, clean up."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from skill_worker.orchestrator.backend import (
    AgentBackend,
    AgentRunError,
    AgentRunRequest,
    AgentRunResult,
)
from skill_worker.orchestrator.failure_classifier import classify_agent_failure
from skill_worker.orchestrator.models import (
    AgentFailure,
    FailureClass,
    GitInfo,
    Job,
    JobResult,
    JobStage,
    WorkspaceKind,
)
from skill_worker.orchestrator.output import failure_output_text, parse_agent_output
from skill_worker.orchestrator.prompt import build_prompt, prompt_document
from skill_worker.orchestrator.publisher import PersistencePublisher
from skill_worker.orchestrator.workspace import (
    ProvisioningError,
    WorkspaceOutcome,
    WorkspaceProvisioner,
)

logger = logging.getLogger(__name__)

AGENT_UNAVAILABLE_EXIT_CODE = 127


@dataclass(slots=True)
class InvocationOutcome:
    """Agent run as seen by the controller, including start-up failures."""

    result: AgentRunResult
    failure: AgentFailure | None

    @property
    def failed(self) -> bool:
        return self.failure is not None


class JobController:
    """Drives one job through its stages and always returns a `JobResult`.

    Stages run strictly in order with no retries. Only provisioning failures and
    unexpected errors abort the pipeline; they become an error-carrying result.
    An ephemeral workspace is removed on every path, a repository one never.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        provisioner: WorkspaceProvisioner,
        backend: AgentBackend,
        publisher: PersistencePublisher,
        worker_name: str,
        agent_timeout_seconds: int = 1_800,
        max_output_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provisioner = provisioner
        self.backend = backend
        self.publisher = publisher
        self.worker_name = worker_name
        self.agent_timeout_seconds = agent_timeout_seconds
        self.max_output_bytes = max_output_bytes
        self._clock = clock
        self.stage = JobStage.DONE

    def process_job(self, job: Job) -> JobResult:
        started = self._clock()
        _log_job_banner(job)

        workspace: WorkspaceOutcome | None = None
        try:
            self._enter(JobStage.PROVISIONING)
            workspace = self._provision(job)

            self._enter(JobStage.PROMPT_BUILDING)
            prompt = build_prompt(job.skills, job.context)
            with prompt_document(workspace.path, prompt) as prompt_path:
                self._enter(JobStage.INVOKING)
                invocation = self._invoke(job=job, prompt_path=prompt_path, workspace=workspace)

            self._enter(JobStage.PERSISTING)
            git_info: GitInfo | None = None
            warnings = list(workspace.warnings)
            if workspace.kind is WorkspaceKind.REPOSITORY:
                published = self.publisher.publish(
                    path=workspace.path,
                    task_id=_task_id(job),
                    agent=invocation.result.agent,
                )
                git_info = published.git_info
                warnings.extend(published.warnings)

            self._enter(JobStage.REPORTING)
            if invocation.failed:
                output = parse_agent_output(failure_output_text(invocation.result))
            else:
                output = parse_agent_output(invocation.result.stdout)
            duration_ms = self._elapsed_ms(started)
            logger.info("  Completed in %ss", round(duration_ms / 1000))
            return JobResult(
                success=not invocation.failed,
                output=output,
                git_info=git_info,
                duration_ms=duration_ms,
                worker_name=self.worker_name,
                warnings=warnings,
                failure=invocation.failure,
            )
        except ProvisioningError as error:
            logger.error("  Job failed: %s", error)
            return self._error_result(str(error), started)
        except Exception as error:
            logger.exception("  Job failed during %s", self.stage.value)
            return self._error_result(f"{self.stage.value} failed: {error}", started)
        finally:
            self._enter(JobStage.CLEANING_UP)
            if workspace is not None and workspace.kind is WorkspaceKind.EPHEMERAL:
                self.provisioner.remove_ephemeral(workspace.path)
            self._enter(JobStage.DONE)

    def _provision(self, job: Job) -> WorkspaceOutcome:
        metadata = job.metadata
        if metadata is not None and metadata.uses_repository:
            return self.provisioner.prepare_repository(
                repo_url=metadata.repo_url or "",
                task_id=_task_id(job),
                branch=metadata.branch or "",
            )
        if metadata is not None and metadata.repo_url:
            logger.warning("  [WARN] repoUrl set without branch; using a scratch directory")
        return self.provisioner.create_ephemeral(job.id)

    def _invoke(
        self,
        *,
        job: Job,
        prompt_path: Path,
        workspace: WorkspaceOutcome,
    ) -> InvocationOutcome:
        logger.info("  Running %s...", job.agent)
        request = AgentRunRequest(
            agent=job.agent,
            prompt_path=prompt_path,
            workdir=workspace.path,
            timeout_seconds=self.agent_timeout_seconds,
            max_output_bytes=self.max_output_bytes,
        )
        try:
            result = self.backend.run(request)
        except (AgentRunError, OSError) as error:
            logger.error("  Agent error: %s", error)
            if isinstance(error, AgentRunError) and not error.transient:
                failure_class = FailureClass.AGENT_UNAVAILABLE
                reason_code = f"{job.agent}_unavailable"
            else:
                failure_class = FailureClass.BACKEND_TRANSIENT
                reason_code = f"{job.agent}_start_failed"
            return InvocationOutcome(
                result=AgentRunResult(
                    agent=job.agent,
                    exit_code=AGENT_UNAVAILABLE_EXIT_CODE,
                    stdout="",
                    stderr=str(error),
                ),
                failure=AgentFailure(
                    agent=job.agent,
                    exit_code=None,
                    timed_out=False,
                    output_limit_exceeded=False,
                    failure_class=failure_class,
                    reason_code=reason_code,
                ),
            )

        if result.ok:
            return InvocationOutcome(result=result, failure=None)

        classification = classify_agent_failure(
            agent=result.agent,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            output_limit_exceeded=result.output_limit_exceeded,
        )
        return InvocationOutcome(
            result=result,
            failure=AgentFailure(
                agent=result.agent,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                output_limit_exceeded=result.output_limit_exceeded,
                failure_class=classification.failure_class,
                reason_code=classification.reason_code,
            ),
        )

    def _error_result(self, message: str, started: float) -> JobResult:
        return JobResult(
            success=False,
            output=None,
            git_info=None,
            duration_ms=self._elapsed_ms(started),
            worker_name=self.worker_name,
            error=message,
        )

    def _enter(self, stage: JobStage) -> None:
        self.stage = stage
        logger.debug("  Stage: %s", stage.value)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def _task_id(job: Job) -> str:
    if job.metadata is not None and job.metadata.task_id:
        return job.metadata.task_id
    return job.id


def _log_job_banner(job: Job) -> None:
    rule = "=" * 60
    logger.info(rule)
    logger.info("Processing job: %s", job.id)
    logger.info("Type: %s", job.type)
    logger.info("Skills: %s", ", ".join(skill.name for skill in job.skills))
    logger.info(rule)
