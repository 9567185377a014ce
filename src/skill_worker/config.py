"""Runtime configuration for the skill worker."""

from __future__ import annotations

import os
import socket
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_AGENTS = ("claude-code", "gemini-cli")
DEFAULT_AGENT = "claude-code"
DEFAULT_MAX_OUTPUT_BYTES = 50 * 1024 * 1024


@dataclass(slots=True)
class BrokerSettings:
    """Redis broker settings."""

    redis_url: str = "redis://localhost:6379/0"
    job_queue: str = "JOB_QUEUE"
    processing_key: str = "PROCESSING"
    results_channel: str = "JOB_RESULTS"
    error_delay_seconds: float = 5.0
    poll_timeout_seconds: int = 5
    socket_timeout_seconds: float | None = None


@dataclass(slots=True)
class WorkerIdentity:
    """Process-wide worker identity, read once at startup."""

    worker_name: str
    worker_id: str

    @classmethod
    def from_name(cls, worker_name: str, pid: int | None = None) -> WorkerIdentity:
        """Build identity as ``<name>-<pid>``."""

        return cls(
            worker_name=worker_name,
            worker_id=f"{worker_name}-{pid if pid is not None else os.getpid()}",
        )


@dataclass(slots=True)
class WorkspaceSettings:
    """Repository and scratch directory settings."""

    repos_dir: Path = Path("/home/worker/repos")
    scratch_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    git_timeout_seconds: int = 1_800
    git_author_name: str = "skill-worker"
    git_author_email: str = "skill-worker@localhost"
    default_branches: tuple[str, ...] = ("main", "master")


@dataclass(slots=True)
class AgentSettings:
    """External agent invocation settings."""

    default_agent: str = DEFAULT_AGENT
    timeout_seconds: int = 1_800
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    claude_command: str | None = None
    gemini_command: str | None = None
    required_agents: tuple[str, ...] = (DEFAULT_AGENT,)
    probe_timeout_seconds: int = 10

    def command_overrides(self) -> dict[str, str]:
        """Return configured argv templates keyed by agent selector."""

        overrides: dict[str, str] = {}
        if self.claude_command and self.claude_command.strip():
            overrides["claude-code"] = self.claude_command.strip()
        if self.gemini_command and self.gemini_command.strip():
            overrides["gemini-cli"] = self.gemini_command.strip()
        return overrides


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    identity: WorkerIdentity = field(
        default_factory=lambda: WorkerIdentity.from_name(socket.gethostname()),
    )
    broker: BrokerSettings = field(default_factory=BrokerSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, repos_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the container image."""

        worker_name = os.getenv(
            "SKILL_WORKER_NAME",
            os.getenv("WORKER_NAME", socket.gethostname()),
        ).strip() or socket.gethostname()
        scratch_root = os.getenv("SKILL_WORKER_SCRATCH_ROOT", "").strip()
        socket_timeout = os.getenv("SKILL_WORKER_REDIS_SOCKET_TIMEOUT_SECONDS", "").strip()
        return cls(
            identity=WorkerIdentity.from_name(worker_name),
            broker=BrokerSettings(
                redis_url=os.getenv(
                    "SKILL_WORKER_REDIS_URL",
                    os.getenv("REDIS_URL", "redis://localhost:6379/0"),
                ),
                job_queue=os.getenv("SKILL_WORKER_JOB_QUEUE", "JOB_QUEUE"),
                processing_key=os.getenv("SKILL_WORKER_PROCESSING_KEY", "PROCESSING"),
                results_channel=os.getenv("SKILL_WORKER_RESULTS_CHANNEL", "JOB_RESULTS"),
                error_delay_seconds=float(
                    os.getenv("SKILL_WORKER_ERROR_DELAY_SECONDS", "5.0"),
                ),
                poll_timeout_seconds=int(os.getenv("SKILL_WORKER_POLL_TIMEOUT_SECONDS", "5")),
                socket_timeout_seconds=float(socket_timeout) if socket_timeout else None,
            ),
            workspace=WorkspaceSettings(
                repos_dir=repos_dir
                or Path(
                    os.getenv(
                        "SKILL_WORKER_REPOS_DIR",
                        os.getenv("REPOS_DIR", "/home/worker/repos"),
                    ),
                ),
                scratch_root=Path(scratch_root) if scratch_root else Path(tempfile.gettempdir()),
                git_timeout_seconds=int(os.getenv("SKILL_WORKER_GIT_TIMEOUT_SECONDS", "1800")),
                git_author_name=os.getenv("SKILL_WORKER_GIT_AUTHOR_NAME", worker_name),
                git_author_email=os.getenv(
                    "SKILL_WORKER_GIT_AUTHOR_EMAIL",
                    f"{worker_name}@skill-worker.local",
                ),
                default_branches=_env_csv("SKILL_WORKER_DEFAULT_BRANCHES", ("main", "master")),
            ),
            agent=AgentSettings(
                default_agent=os.getenv("SKILL_WORKER_DEFAULT_AGENT", DEFAULT_AGENT)
                .strip()
                .lower(),
                timeout_seconds=int(os.getenv("SKILL_WORKER_AGENT_TIMEOUT_SECONDS", "1800")),
                max_output_bytes=int(
                    os.getenv("SKILL_WORKER_AGENT_MAX_OUTPUT_BYTES", str(DEFAULT_MAX_OUTPUT_BYTES)),
                ),
                claude_command=os.getenv("SKILL_WORKER_CLAUDE_COMMAND") or None,
                gemini_command=os.getenv("SKILL_WORKER_GEMINI_COMMAND") or None,
                required_agents=tuple(
                    agent.lower()
                    for agent in _env_csv("SKILL_WORKER_REQUIRED_AGENTS", (DEFAULT_AGENT,))
                ),
                probe_timeout_seconds=int(
                    os.getenv("SKILL_WORKER_AGENT_PROBE_TIMEOUT_SECONDS", "10"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on unusable values."""

        parsed = urlparse(self.broker.redis_url)
        if parsed.scheme not in {"redis", "rediss", "unix"}:
            raise ValueError(
                f"Invalid Redis URL: {self.broker.redis_url!r}. "
                "Expected redis://, rediss:// or unix:// scheme.",
            )
        for name, value in (
            ("SKILL_WORKER_JOB_QUEUE", self.broker.job_queue),
            ("SKILL_WORKER_PROCESSING_KEY", self.broker.processing_key),
            ("SKILL_WORKER_RESULTS_CHANNEL", self.broker.results_channel),
        ):
            if not value.strip():
                raise ValueError(f"{name} must not be empty.")
        if self.broker.error_delay_seconds < 0:
            raise ValueError("SKILL_WORKER_ERROR_DELAY_SECONDS must be >= 0.")
        if self.broker.poll_timeout_seconds <= 0:
            raise ValueError("SKILL_WORKER_POLL_TIMEOUT_SECONDS must be > 0.")
        socket_timeout = self.broker.socket_timeout_seconds
        if socket_timeout is not None and socket_timeout <= self.broker.poll_timeout_seconds:
            raise ValueError(
                "SKILL_WORKER_REDIS_SOCKET_TIMEOUT_SECONDS must exceed "
                "SKILL_WORKER_POLL_TIMEOUT_SECONDS.",
            )
        if self.workspace.git_timeout_seconds <= 0:
            raise ValueError("SKILL_WORKER_GIT_TIMEOUT_SECONDS must be > 0.")
        if not self.workspace.default_branches:
            raise ValueError("SKILL_WORKER_DEFAULT_BRANCHES must list at least one branch.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("SKILL_WORKER_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.agent.max_output_bytes <= 0:
            raise ValueError("SKILL_WORKER_AGENT_MAX_OUTPUT_BYTES must be > 0.")
        if self.agent.probe_timeout_seconds <= 0:
            raise ValueError("SKILL_WORKER_AGENT_PROBE_TIMEOUT_SECONDS must be > 0.")
        _validate_supported_agent(self.agent.default_agent)
        for agent in self.agent.required_agents:
            _validate_supported_agent(agent)


def _validate_supported_agent(agent: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise ValueError(
        f"Unsupported agent: {agent!r}. Use one of {', '.join(SUPPORTED_AGENTS)}.",
    )


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)
