"""Domain models for queued jobs and their results."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from skill_worker.config import DEFAULT_AGENT


class JobParseError(ValueError):
    """Broker payload cannot be interpreted as a job."""


class JobStage(str, Enum):
    """Sequential lifecycle stages of one job execution."""

    PROVISIONING = "provisioning"
    PROMPT_BUILDING = "prompt_building"
    INVOKING = "invoking"
    PERSISTING = "persisting"
    REPORTING = "reporting"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class WorkspaceKind(str, Enum):
    """Storage class of a job workspace."""

    REPOSITORY = "repository"
    EPHEMERAL = "ephemeral"


class FailureClass(str, Enum):
    """Normalized classes of agent invocation failures."""

    TIMEOUT = "timeout"
    OUTPUT_LIMIT = "output_limit"
    AGENT_UNAVAILABLE = "agent_unavailable"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


@dataclass(frozen=True, slots=True)
class Skill:
    """Reusable instruction block attached to a job."""

    name: str
    content: str


@dataclass(frozen=True, slots=True)
class JobMetadata:
    """Optional routing metadata of a job."""

    repo_url: str | None = None
    branch: str | None = None
    task_id: str | None = None
    agent: str = DEFAULT_AGENT
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def uses_repository(self) -> bool:
        return bool(self.repo_url) and bool(self.branch)


@dataclass(frozen=True, slots=True)
class Job:
    """Unit of work read from the broker."""

    id: str
    type: str
    skills: tuple[Skill, ...] = ()
    context: str = ""
    metadata: JobMetadata | None = None

    @property
    def agent(self) -> str:
        if self.metadata is None:
            return DEFAULT_AGENT
        return self.metadata.agent

    def metadata_payload(self) -> dict[str, Any] | None:
        """Return metadata exactly as received, for result echoing."""

        if self.metadata is None:
            return None
        return dict(self.metadata.raw)


@dataclass(slots=True)
class GitInfo:
    """Persistence outcome reported with a job result."""

    has_changes: bool
    files_modified: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {"hasChanges": self.has_changes, "filesModified": list(self.files_modified)}


@dataclass(slots=True)
class AgentFailure:
    """Diagnostics of a failed agent invocation."""

    agent: str
    exit_code: int | None
    timed_out: bool
    output_limit_exceeded: bool
    failure_class: FailureClass
    reason_code: str

    def to_payload(self) -> dict[str, object]:
        return {
            "agent": self.agent,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "outputLimitExceeded": self.output_limit_exceeded,
            "failureClass": self.failure_class.value,
            "reasonCode": self.reason_code,
        }


@dataclass(slots=True)
class JobResult:
    """Terminal outcome of one job execution."""

    success: bool
    output: Any
    git_info: GitInfo | None
    duration_ms: int
    worker_name: str
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    failure: AgentFailure | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the wire shape published on the results channel."""

        payload: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            "gitInfo": self.git_info.to_payload() if self.git_info is not None else None,
            "duration": self.duration_ms,
            "workerName": self.worker_name,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        if self.failure is not None:
            payload["failure"] = self.failure.to_payload()
        return payload


@dataclass(slots=True)
class ProcessingRecord:
    """In-progress registry entry stored under the job id."""

    worker_id: str
    worker_name: str
    started_at_ms: int
    type: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "workerId": self.worker_id,
                "workerName": self.worker_name,
                "startedAt": self.started_at_ms,
                "type": self.type,
            },
        )


@dataclass(frozen=True, slots=True)
class JobEnvelope:
    """Routing fields echoed in every published result."""

    id: str
    type: str = ""
    metadata: dict[str, Any] | None = None


def job_envelope(raw: str | bytes) -> JobEnvelope | None:
    """Salvage id, type and metadata from a payload that failed to parse.

    Returns ``None`` when no usable id can be read, so no result can be addressed.
    """

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or not _usable_id(payload.get("id")):
        return None
    job_type = payload.get("type")
    metadata = payload.get("metadata")
    return JobEnvelope(
        id=str(payload["id"]),
        type=job_type if isinstance(job_type, str) else "",
        metadata=dict(metadata) if isinstance(metadata, dict) else None,
    )


def parse_job(raw: str | bytes) -> Job:
    """Parse a serialized broker payload into a `Job`."""

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise JobParseError(f"Job payload is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise JobParseError(f"Job payload must be a JSON object, got {type(payload).__name__}")
    return job_from_payload(payload)


def job_from_payload(payload: dict[str, Any]) -> Job:
    """Build a `Job` from an already decoded JSON object."""

    job_id = payload.get("id")
    if not _usable_id(job_id):
        raise JobParseError("Job payload is missing a non-empty 'id'")

    job_type = payload.get("type")
    if job_type is not None and not isinstance(job_type, str):
        raise JobParseError("Job 'type' must be a string")

    context = payload.get("context")
    if context is not None and not isinstance(context, str):
        raise JobParseError("Job 'context' must be a string")

    return Job(
        id=str(job_id),
        type=job_type or "",
        skills=_parse_skills(payload.get("skills")),
        context=context or "",
        metadata=_parse_metadata(payload.get("metadata")),
    )


def _usable_id(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return False
    return str(value).strip() != ""


def _parse_skills(raw: object) -> tuple[Skill, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise JobParseError("Job 'skills' must be a list")
    skills: list[Skill] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise JobParseError(f"Skill #{index} must be an object")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise JobParseError(f"Skill #{index} is missing a 'name'")
        content = item.get("content")
        if content is not None and not isinstance(content, str):
            raise JobParseError(f"Skill {name!r} 'content' must be a string")
        skills.append(Skill(name=name, content=content or ""))
    return tuple(skills)


def _parse_metadata(raw: object) -> JobMetadata | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise JobParseError("Job 'metadata' must be an object")
    agent = _optional_text(raw, "agent")
    return JobMetadata(
        repo_url=_optional_text(raw, "repoUrl"),
        branch=_optional_text(raw, "branch"),
        task_id=_optional_text(raw, "taskId"),
        agent=agent.lower() if agent else DEFAULT_AGENT,
        raw=dict(raw),
    )


def _optional_text(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise JobParseError(f"Job metadata {key!r} must be a string")
    text = str(value).strip()
    return text or None
