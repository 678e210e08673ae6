"""
Git collaborator - The git / gh operations the pipeline needs.
Git 协作者 —— 流水线所需的 git / gh 操作。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import config
from services.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)


class GitClient:
    """
    Runs git and gh inside one repository working tree.
    在单个仓库工作区中运行 git 与 gh。
    """

    def __init__(
        self,
        repo_dir: str | Path,
        git_executables: Sequence[str] | None = None,
        gh_executables: Sequence[str] | None = None,
        runner: ToolRunner = run_tool,
    ):
        self.repo_dir = Path(repo_dir)
        self._git = list(git_executables or config.GIT_EXECUTABLES)
        self._gh = list(gh_executables or config.GH_EXECUTABLES)
        self._runner = runner

    async def git(self, *args: str, capture: bool = False) -> list[str]:
        output = await self._runner("git", self._git, list(args), cwd=self.repo_dir, capture_output=capture)
        return output.stdout

    async def fetch(self, remote: str = "origin") -> None:
        await self.git("fetch", "--prune", remote)

    async def remote_branches(self) -> list[str]:
        lines = await self.git("branch", "--remotes", "--format=%(refname:short)", capture=True)
        return [line.strip() for line in lines if line.strip()]

    async def remote_branch_exists(self, branch: str, remote: str = "origin") -> bool:
        return f"{remote}/{branch}" in await self.remote_branches()

    async def create_branch(self, branch: str) -> None:
        """Create `branch` from HEAD and check it out."""
        await self.git("checkout", "-b", branch)

    async def add(self, *paths: str | Path) -> None:
        await self.git("add", "--", *(str(p) for p in paths))

    async def config_get(self, key: str) -> str:
        lines = await self.git("config", "--get", key, capture=True)
        return lines[0].strip() if lines else ""

    async def commit(self, message: str) -> None:
        """
        Commit staged changes with the identity from `git config user.name/user.email`.
        使用 git config 中的用户名与邮箱提交暂存的更改。
        """
        name = await self.config_get("user.name")
        email = await self.config_get("user.email")
        await self.git("-c", f"user.name={name}", "-c", f"user.email={email}", "commit", "-m", message)

    async def push_upstream(self, branch: str, remote: str = "origin") -> None:
        await self.git("push", "--set-upstream", remote, branch)

    async def create_pull_request(self, title: str, body: str, head: str) -> None:
        logger.info("[Git] Opening pull request for %s", head)
        await self._runner(
            "gh",
            self._gh,
            ["pr", "create", "--title", title, "--body", body, "--head", head],
            cwd=self.repo_dir,
        )
