"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from skill_worker.orchestrator.backend import CliAgentBackend
from skill_worker.orchestrator.lifecycle import JobController
from skill_worker.orchestrator.models import ProcessingRecord
from skill_worker.orchestrator.publisher import PersistencePublisher
from skill_worker.orchestrator.vcs import GitRunner
from skill_worker.orchestrator.workspace import WorkspaceProvisioner

ECHO_AGENT = f"{shlex.quote(sys.executable)} -m skill_worker.orchestrator.backend.echo_agent"

_GIT_IDENTITY = ("-c", "user.name=Test Seeder", "-c", "user.email=seeder@example.com")


def echo_agent_command(*args: str) -> str:
    """Command line running the local echo agent with extra arguments."""

    return " ".join([ECHO_AGENT, *(shlex.quote(arg) for arg in args)])


def git(*args: str, cwd: Path) -> str:
    completed = subprocess.run(  # noqa: S603
        ["git", *_GIT_IDENTITY, *args],  # noqa: S607
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
    )
    return completed.stdout


@pytest.fixture()
def remote_repo(tmp_path: Path) -> Path:
    """Bare repository on ``main`` seeded with one commit."""

    remote = tmp_path / "remote" / "project.git"
    remote.mkdir(parents=True)
    git("init", "--bare", cwd=remote)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=remote)

    seed = tmp_path / "seed"
    seed.mkdir()
    git("init", cwd=seed)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=seed)
    (seed / "README.md").write_text("seed\n", "utf-8")
    git("add", "README.md", cwd=seed)
    git("commit", "-m", "initial", cwd=seed)
    git("remote", "add", "origin", str(remote), cwd=seed)
    git("push", "origin", "main", cwd=seed)
    return remote


@pytest.fixture()
def scratch_root(tmp_path: Path) -> Path:
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture()
def repos_dir(tmp_path: Path) -> Path:
    return tmp_path / "repos"


@pytest.fixture()
def provisioner(repos_dir: Path, scratch_root: Path) -> WorkspaceProvisioner:
    return WorkspaceProvisioner(
        repos_dir=repos_dir,
        scratch_root=scratch_root,
        git=GitRunner(timeout_seconds=60),
    )


@pytest.fixture()
def make_controller(
    provisioner: WorkspaceProvisioner,
) -> Callable[..., JobController]:
    """Factory for a controller whose agents all run the given command line."""

    def _make(command: str, **kwargs: Any) -> JobController:
        backend = CliAgentBackend(
            command_overrides={"claude-code": command, "gemini-cli": command},
        )
        return JobController(
            provisioner=provisioner,
            backend=backend,
            publisher=PersistencePublisher(
                git=provisioner.git,
                author_name="Test Worker",
                author_email="worker@example.com",
            ),
            worker_name="test-worker",
            **kwargs,
        )

    return _make


class FakeBroker:
    """In-memory `JobBroker` recording every call."""

    def __init__(
        self,
        payloads: list[str] | None = None,
        *,
        on_empty: Callable[[], None] | None = None,
    ) -> None:
        self.queue: deque[str] = deque(payloads or [])
        self.on_empty = on_empty
        self.processing: dict[str, ProcessingRecord] = {}
        self.processing_history: list[tuple[str, ProcessingRecord]] = []
        self.published: list[dict[str, Any]] = []
        self.fail_publish = False

    def ping(self) -> bool:
        return True

    def pop_job(self) -> str | None:
        if self.queue:
            return self.queue.popleft()
        if self.on_empty is not None:
            self.on_empty()
        return None

    def mark_processing(self, job_id: str, record: ProcessingRecord) -> None:
        self.processing[job_id] = record
        self.processing_history.append((job_id, record))

    def clear_processing(self, job_id: str) -> None:
        self.processing.pop(job_id, None)

    def publish_result(self, payload: dict[str, Any]) -> None:
        if self.fail_publish:
            raise ConnectionError("broker went away")
        self.published.append(payload)


@pytest.fixture()
def echo_command() -> Callable[..., str]:
    return echo_agent_command


@pytest.fixture()
def run_git() -> Callable[..., str]:
    return git


@pytest.fixture()
def broker_factory() -> type[FakeBroker]:
    return FakeBroker


@pytest.fixture()
def clone_remote(tmp_path: Path, remote_repo: Path) -> Callable[[str], Path]:
    """Fresh clone of the remote, used to inspect what the worker pushed."""

    def _clone(branch: str) -> Path:
        target = tmp_path / f"inspect-{branch.replace('/', '_')}"
        git("clone", "--branch", branch, str(remote_repo), str(target), cwd=tmp_path)
        return target

    return _clone
