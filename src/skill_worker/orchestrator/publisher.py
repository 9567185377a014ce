"""Commit-and-push of agent changes for repository-backed jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from skill_worker.orchestrator.models import GitInfo
from skill_worker.orchestrator.vcs import GitCommandError, GitRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PublishOutcome:
    """Persistence result with non-fatal warnings."""

    git_info: GitInfo
    committed: bool = False
    pushed: bool = False
    warnings: list[str] = field(default_factory=list)


def commit_message(*, task_id: str, agent: str) -> str:
    return f"feat({task_id}): implementation by {agent}"


class PersistencePublisher:
    """Stages, commits, and pushes whatever the agent left in the workspace.

    Never raises: every git failure is logged and reported as a warning, so the
    job result keeps reflecting the agent outcome only.
    """

    def __init__(self, *, git: GitRunner, author_name: str, author_email: str) -> None:
        self.git = git
        self.author_name = author_name
        self.author_email = author_email

    def publish(self, *, path: Path, task_id: str, agent: str) -> PublishOutcome:
        outcome = PublishOutcome(git_info=GitInfo(has_changes=False))
        try:
            self.git.run("add", "-A", cwd=path)
            status = self.git.run("status", "--porcelain", cwd=path)
        except GitCommandError as error:
            outcome.warnings.append(f"Could not stage changes: {error}")
            return outcome

        if not status.stdout.strip():
            logger.info("  No changes to commit")
            return outcome
        outcome.git_info.has_changes = True

        try:
            self.git.run(
                "-c",
                f"user.name={self.author_name}",
                "-c",
                f"user.email={self.author_email}",
                "commit",
                "--no-verify",
                "-m",
                commit_message(task_id=task_id, agent=agent),
                cwd=path,
            )
            outcome.committed = True
            self.git.run("push", "-u", "origin", "HEAD", cwd=path)
            outcome.pushed = True
        except GitCommandError as error:
            logger.warning("  [WARN] Commit/push failed: %s", error)
            outcome.warnings.append(f"Commit/push failed: {error}")
            return outcome

        logger.info("  Changes committed and pushed")
        outcome.git_info.files_modified = self._files_in_last_commit(path, outcome.warnings)
        return outcome

    def _files_in_last_commit(self, path: Path, warnings: list[str]) -> list[str]:
        try:
            diff = self.git.run("diff", "--name-only", "HEAD~1", "HEAD", cwd=path)
        except GitCommandError as error:
            warnings.append(f"Could not list modified files: {error}")
            return []
        return [line.strip() for line in diff.stdout.splitlines() if line.strip()]
