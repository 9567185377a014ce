"""Workspace provisioning: synchronized git checkouts and ephemeral scratch dirs."""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from skill_worker.orchestrator.models import WorkspaceKind
from skill_worker.orchestrator.vcs import GitCommandError, GitRunner, repo_name_from_url

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ProvisioningError(RuntimeError):
    """Workspace could not be produced; fatal for the job."""


@dataclass(slots=True)
class WorkspaceOutcome:
    """Provisioned workspace with non-fatal warnings collected on the way."""

    path: Path
    kind: WorkspaceKind
    created: bool
    warnings: list[str] = field(default_factory=list)


class WorkspaceProvisioner:
    """Produces one working directory per job execution.

    Repository workspaces live at ``<repos_dir>/<repoName>-<taskId>`` and are
    reused by later runs of the same task. Only one worker may own a given
    task id at a time; nothing here locks the directory.
    """

    def __init__(
        self,
        *,
        repos_dir: Path,
        scratch_root: Path,
        git: GitRunner,
        default_branches: tuple[str, ...] = ("main", "master"),
    ) -> None:
        self.repos_dir = repos_dir
        self.scratch_root = scratch_root
        self.git = git
        self.default_branches = default_branches

    def repository_path(self, *, repo_url: str, task_id: str) -> Path:
        """Return the deterministic checkout path for a repository task."""

        repo_name = _safe_component(repo_name_from_url(repo_url)) or "repo"
        return self.repos_dir / f"{repo_name}-{_safe_component(task_id) or 'task'}"

    def prepare_repository(
        self,
        *,
        repo_url: str,
        task_id: str,
        branch: str,
    ) -> WorkspaceOutcome:
        """Return a checkout of ``repo_url`` on ``branch``.

        Raises `ProvisioningError` when the clone fails or the branch can be
        neither checked out nor created. Update failures on an existing
        checkout are reported as warnings; a stale workspace is acceptable.
        """

        path = self.repository_path(repo_url=repo_url, task_id=task_id)
        logger.info("  Repo: %s", path)

        warnings: list[str] = []
        created = False
        if path.exists():
            logger.info("  Updating existing repo...")
            warnings.extend(self.reset_workspace(path))
            warnings.extend(self._update_default_branch(path))
        else:
            logger.info("  Cloning repository...")
            self._clone(repo_url=repo_url, path=path)
            created = True

        warnings.extend(self._checkout_branch(path=path, branch=branch))
        return WorkspaceOutcome(
            path=path,
            kind=WorkspaceKind.REPOSITORY,
            created=created,
            warnings=warnings,
        )

    def reset_workspace(self, path: Path) -> list[str]:
        """Discard all uncommitted changes and untracked files in ``path``.

        Destructive: the caller accepts the loss of any local modifications.
        """

        warnings: list[str] = []
        for args in (("reset", "--hard"), ("clean", "-fd")):
            try:
                self.git.run(*args, cwd=path)
            except GitCommandError as error:
                warnings.append(f"Workspace reset step failed: {error}")
        return warnings

    def create_ephemeral(self, job_id: str) -> WorkspaceOutcome:
        """Create a uniquely named scratch directory for a non-repository job."""

        self.scratch_root.mkdir(parents=True, exist_ok=True)
        prefix = f"worker-{_safe_component(job_id) or 'job'}-{int(time.time() * 1000)}-"
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=self.scratch_root))
        logger.info("  Scratch dir: %s", path)
        return WorkspaceOutcome(path=path, kind=WorkspaceKind.EPHEMERAL, created=True)

    def remove_ephemeral(self, path: Path) -> bool:
        """Delete a scratch directory; best-effort, only inside the scratch root."""

        try:
            resolved = path.resolve()
            resolved.relative_to(self.scratch_root.resolve())
        except (OSError, ValueError):
            logger.warning("  [WARN] Refusing to remove %s: outside scratch root", path)
            return False
        if resolved == self.scratch_root.resolve():
            logger.warning("  [WARN] Refusing to remove the scratch root itself")
            return False
        try:
            shutil.rmtree(resolved)
        except FileNotFoundError:
            return True
        except OSError as error:
            logger.warning("  [WARN] Could not remove scratch dir %s: %s", resolved, error)
            return False
        return True

    def _clone(self, *, repo_url: str, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.git.run("clone", repo_url, str(path))
        except GitCommandError as error:
            if path.exists():
                shutil.rmtree(path, ignore_errors=True)
            raise ProvisioningError(f"Clone failed for {repo_url}: {error}") from error

    def _update_default_branch(self, path: Path) -> list[str]:
        warnings: list[str] = []
        try:
            self.git.run("fetch", "origin", cwd=path)
        except GitCommandError as error:
            logger.warning("  [WARN] Fetch failed, continuing with local state")
            warnings.append(f"Could not fetch origin: {error}")

        for default_branch in self.default_branches:
            try:
                self.git.run("checkout", default_branch, cwd=path)
                self.git.run("pull", "origin", default_branch, cwd=path)
            except GitCommandError:
                continue
            return warnings

        names = "/".join(self.default_branches)
        logger.warning("  [WARN] Could not update from %s", names)
        warnings.append(f"Could not update from {names}; workspace may be stale")
        return warnings

    def _checkout_branch(self, *, path: Path, branch: str) -> list[str]:
        try:
            self.git.run("checkout", branch, cwd=path)
        except GitCommandError:
            try:
                self.git.run("checkout", "-b", branch, cwd=path)
            except GitCommandError as error:
                raise ProvisioningError(
                    f"Could not check out or create branch {branch!r}: {error}",
                ) from error
            logger.info("  Created branch %s", branch)
            return []

        logger.info("  Checked out %s", branch)
        try:
            self.git.run("pull", "origin", branch, cwd=path)
        except GitCommandError as error:
            return [f"Could not pull branch {branch!r}: {error}"]
        return []


def _safe_component(value: str) -> str:
    return _UNSAFE_PATH_CHARS.sub("_", value.strip()).strip("._")
