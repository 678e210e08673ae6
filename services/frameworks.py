"""
Target framework monikers and nearest-framework selection.
目标框架标识（TFM）解析与最近框架选择。

Package folders such as lib/net472/ or ref/netstandard2.0/ are grouped by
framework; for a requested target, the nearest compatible group wins:
  1. same framework family, highest version not above the target
  2. .NET Standard, highest version the target supports
  3. framework-agnostic items ("any" or no framework folder)

包内 lib/net472/、ref/netstandard2.0/ 等目录按框架分组；对请求的目标框架选择最近的兼容分组：
  1. 同一框架家族中不高于目标版本的最高版本
  2. 目标支持的最高 .NET Standard 版本
  3. 与框架无关的条目（"any" 或无框架目录）
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import NamedTuple

NET_FRAMEWORK = ".NETFramework"
NET_STANDARD = ".NETStandard"
NET_CORE_APP = ".NETCoreApp"
AGNOSTIC = "Any"

_MONIKER = re.compile(r"^(?P<name>netstandard|netcoreapp|net)(?P<version>[\d.]*)(?:-.*)?$", re.IGNORECASE)

# Highest .NET Standard version each platform release implements.
# 各平台版本实现的最高 .NET Standard 版本。
_NETSTANDARD_SUPPORT: dict[str, list[tuple[tuple[int, ...], tuple[int, ...]]]] = {
    NET_FRAMEWORK: [((4, 6, 1), (2,)), ((4, 6), (1, 3)), ((4, 5, 2), (1, 2)), ((4, 5), (1, 1))],
    NET_CORE_APP: [((3,), (2, 1)), ((2,), (2,)), ((1,), (1, 6))],
}


class Framework(NamedTuple):
    family: str
    version: tuple[int, ...]

    @classmethod
    def parse(cls, moniker: str) -> Framework:
        """
        Parse a short folder name: net472, net48, net6.0, netcoreapp3.1, netstandard2.0, any.
        解析短框架名。
        """
        text = moniker.strip().lower()
        if text in ("", "any"):
            return cls(AGNOSTIC, ())
        match = _MONIKER.match(text)
        if match is None:
            raise ValueError(f"Unrecognised target framework moniker '{moniker}'")

        name, raw = match.group("name"), match.group("version")
        if "." in raw:
            version = tuple(int(p) for p in raw.split(".") if p)
        else:
            # net472 -> 4.7.2, netstandard2 -> 2
            version = tuple(int(c) for c in raw)
        version = _trim(version)

        if name == "netstandard":
            return cls(NET_STANDARD, version)
        if name == "netcoreapp":
            return cls(NET_CORE_APP, version)
        # net5.0 及以上属于 .NET Core 家族
        if version and version[0] >= 5:
            return cls(NET_CORE_APP, version)
        return cls(NET_FRAMEWORK, version)

    def supported_netstandard(self) -> tuple[int, ...] | None:
        if self.family == NET_STANDARD:
            return self.version
        for minimum, standard in _NETSTANDARD_SUPPORT.get(self.family, []):
            if self.version >= minimum:
                return standard
        return None


def _trim(version: tuple[int, ...]) -> tuple[int, ...]:
    parts = list(version)
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def _rank(target: Framework, candidate: Framework) -> tuple[int, tuple[int, ...]] | None:
    """Higher ranks are nearer; None means incompatible."""
    if candidate.family == AGNOSTIC:
        return (0, ())
    if candidate.family == target.family:
        if candidate.version <= target.version:
            return (2, candidate.version)
        return None
    if candidate.family == NET_STANDARD:
        supported = target.supported_netstandard()
        if supported is not None and candidate.version <= supported:
            return (1, candidate.version)
    return None


def nearest_framework(target: str | Framework, candidates: Iterable[str]) -> str | None:
    """
    Return the candidate moniker nearest to `target`, or None when none is compatible.
    返回最接近 `target` 的候选框架名；没有兼容项时返回 None。
    """
    wanted = target if isinstance(target, Framework) else Framework.parse(target)
    best: tuple[tuple[int, tuple[int, ...]], str] | None = None
    for moniker in candidates:
        try:
            rank = _rank(wanted, Framework.parse(moniker))
        except ValueError:
            continue
        if rank is None:
            continue
        if best is None or rank > best[0]:
            best = (rank, moniker)
    return best[1] if best else None
