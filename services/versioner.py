"""
Versioner - When did this pipeline's own version last change?
版本器 —— 本流水线自身的版本最近一次变化是什么时候？

The pipeline version is the highest `v<semver>` tag reachable from HEAD. Its
commit's committer date is the cut-off for "deployed packages were built by
the current pipeline version". With no version tag, the root commit counts as
version 0.0.0.

流水线版本取自 HEAD 可达的最高 `v<semver>` 标签，其提交的 committer 日期即为判断
「已发布的包是否由当前流水线版本构建」的分界点。没有版本标签时，根提交视为 0.0.0 版本。
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import NamedTuple

from errors import OutputFormatError
from services.git import GitClient

logger = logging.getLogger(__name__)

VERSION_TAG_PREFIX = "v"

_SEMVER = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class SemanticVersion(NamedTuple):
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> SemanticVersion | None:
        match = _SEMVER.match(text)
        if match is None:
            return None
        pre = tuple(match.group("pre").split(".")) if match.group("pre") else ()
        return cls(int(match.group("major")), int(match.group("minor")), int(match.group("patch")), pre)

    def sort_key(self) -> tuple:
        """
        SemVer precedence: a release outranks its prereleases; numeric
        identifiers compare numerically and rank below alphanumeric ones.
        """
        if not self.prerelease:
            pre_key: tuple = ((1,),)
        else:
            pre_key = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in self.prerelease)
            pre_key = ((0,), *pre_key)
        return (self.major, self.minor, self.patch, pre_key)

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        return f"{core}-{'.'.join(self.prerelease)}" if self.prerelease else core


class Versioner:
    """
    Computes (once) the current pipeline version and its commit date.
    计算（仅一次）当前流水线版本及其提交日期。
    """

    def __init__(self, git: GitClient):
        self._git = git
        self._resolved: tuple[SemanticVersion, datetime] | None = None

    async def _commit_date(self, revision: str) -> datetime:
        lines = await self._git.git("log", "-1", "--format=%cI", revision, capture=True)
        if not lines or not lines[0].strip():
            raise OutputFormatError(f"git log printed no date for {revision}")
        return datetime.fromisoformat(lines[0].strip())

    async def _resolve(self) -> tuple[SemanticVersion, datetime]:
        tags = await self._git.git("tag", "--merged", "HEAD", "--list", f"{VERSION_TAG_PREFIX}*", capture=True)
        candidates: list[tuple[SemanticVersion, str]] = []
        for tag in (t.strip() for t in tags):
            version = SemanticVersion.parse(tag[len(VERSION_TAG_PREFIX):]) if tag.startswith(VERSION_TAG_PREFIX) else None
            if version is not None:
                candidates.append((version, tag))

        if candidates:
            version, tag = max(candidates, key=lambda c: (c[0].sort_key(), c[1]))
            changed_at = await self._commit_date(f"{tag}^{{commit}}")
            logger.info("[Versioner] Pipeline version %s (tag %s, %s)", version, tag, changed_at.isoformat())
            return version, changed_at

        roots = await self._git.git("rev-list", "--max-parents=0", "HEAD", capture=True)
        if not roots:
            raise OutputFormatError("git rev-list found no root commit")
        changed_at = await self._commit_date(roots[0].strip())
        logger.info("[Versioner] No version tag; using root commit date %s", changed_at.isoformat())
        return SemanticVersion(0, 0, 0), changed_at

    async def _resolved_once(self) -> tuple[SemanticVersion, datetime]:
        if self._resolved is None:
            self._resolved = await self._resolve()
        return self._resolved

    async def version(self) -> SemanticVersion:
        version, _ = await self._resolved_once()
        return version

    async def last_version_change(self) -> datetime:
        _, changed_at = await self._resolved_once()
        return changed_at
