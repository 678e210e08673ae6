"""
Assembly publicizer - Strips (and optionally publicizes) a .NET assembly.
程序集公开化工具 —— 剥离（并可选公开化）.NET 程序集。

Wraps the `assembly-publicizer` CLI:
    assembly-publicizer <in> --output <out> --strip --target All|None
`--target All` makes every member public; `--target None` only strips method bodies.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import config
from services.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)


class AssemblyPublicizer:
    """Production AssemblyTransformer backed by the publicizer CLI."""

    def __init__(self, executables: Sequence[str] | None = None, runner: ToolRunner = run_tool):
        self._executables = list(executables or config.PUBLICIZER_EXECUTABLES)
        self._runner = runner

    async def transform(self, source: Path, destination: Path, publicize: bool) -> None:
        await self._runner(
            "assembly-publicizer",
            self._executables,
            [
                str(source),
                "--output", str(destination),
                "--strip",
                "--target", "All" if publicize else "None",
            ],
        )
