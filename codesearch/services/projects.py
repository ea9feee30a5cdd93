"""Local project cache: one git checkout per project under the sources dir."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Branches tried, in order, when cloning and when choosing what to pull
BRANCH_ORDER = ("sprint", "master", "main")
# git exits with 128 when the requested branch does not exist on the remote
GIT_NO_SUCH_BRANCH = 128


class GitError(RuntimeError):
    """A git command failed."""


class InvalidProjectName(ValueError):
    pass


@dataclass
class GitResult:
    code: int
    stdout: str
    stderr: str


async def run_git(args: Sequence[str], cwd: Path) -> GitResult:
    """Run `git <args>` with stdin closed and return its captured output."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise GitError(f"Failed to run git: {e}") from e
    out, err = await proc.communicate()
    return GitResult(
        code=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


def _failure(what: str, res: GitResult) -> GitError:
    detail = res.stderr.strip() or f"exit code {res.code}"
    return GitError(f"{what} failed: {detail}")


class ProjectStore:
    """Lists, clones and refreshes checkouts in `sources_dir`."""

    def __init__(self, sources_dir: Path) -> None:
        self.sources_dir = Path(sources_dir)

    def list_projects(self) -> List[str]:
        """Sorted names of the non-hidden subdirectories of the sources dir."""
        if not self.sources_dir.is_dir():
            raise FileNotFoundError(f"Sources directory does not exist: {self.sources_dir}")
        projects = []
        for entry in self.sources_dir.iterdir():
            if entry.name.startswith("."):
                continue
            try:
                if entry.is_dir():
                    projects.append(entry.name)
            except OSError:
                # skip inaccessible
                continue
        return sorted(projects)

    def has_project(self, name: str) -> bool:
        return name in self.list_projects()

    def project_path(self, name: str) -> Path:
        if not name or ".." in name or "/" in name or "\\" in name:
            raise InvalidProjectName(f"Invalid project name {name}.")
        return self.sources_dir / name

    async def clone(self, url: str) -> str:
        """Clone `url` into the sources dir, trying each preferred branch.

        Returns the branch that was cloned.
        """
        self.sources_dir.mkdir(parents=True, exist_ok=True)
        last: Optional[GitResult] = None
        for branch in BRANCH_ORDER:
            logger.info('[clone] Trying branch "%s" for %s', branch, url)
            res = await run_git(["clone", "-b", branch, url], self.sources_dir)
            if res.code == 0:
                logger.info('[clone] Cloned with branch "%s"', branch)
                return branch
            last = res
            if res.code != GIT_NO_SUCH_BRANCH:
                raise _failure("git clone", res)
        detail = last.stderr.strip() if last else ""
        raise GitError(f"git clone failed (no branch found): {detail or 'no matching branch'}")

    async def _current_branch(self, path: Path) -> Optional[str]:
        res = await run_git(["branch", "--show-current"], path)
        name = res.stdout.strip()
        return name if res.code == 0 and name else None

    async def _branch_to_pull(self, path: Path) -> str:
        for branch in BRANCH_ORDER:
            res = await run_git(["rev-parse", "--verify", f"origin/{branch}"], path)
            if res.code == 0:
                return branch
        return await self._current_branch(path) or "main"

    async def pull(self, name: str) -> str:
        """Fetch, switch to the preferred branch if needed, then pull.

        Returns the branch that was pulled.
        """
        path = self.project_path(name)
        fetch = await run_git(["fetch", "origin"], path)
        if fetch.code != 0:
            # Continue to pull even if fetch fails (e.g. offline)
            logger.warning("[pull] %s: git fetch failed: %s", name, fetch.stderr.strip())

        branch = await self._branch_to_pull(path)
        current = await self._current_branch(path)
        if current != branch:
            res = await run_git(["checkout", branch], path)
            if res.code != 0:
                raise _failure(f"git checkout {branch}", res)

        logger.info('[pull] %s: using branch "%s"', name, branch)
        res = await run_git(["pull"], path)
        if res.code != 0:
            raise _failure("git pull", res)
        return branch
