"""
Process runner - Runs external executables on the asyncio event loop.
进程执行器 —— 在 asyncio 事件循环上运行外部可执行程序。

Every external tool (SteamCMD, dotnet, git, gh, assembly-publicizer) goes
through run_tool(), which:
  - resolves the executable from a list of candidate names on PATH
  - streams stdout lines to the logger (INFO) and stderr lines (WARNING)
  - optionally captures the output and feeds text to stdin
  - raises ToolError on a non-zero exit code

所有外部工具都通过 run_tool() 调用：
  - 按候选名称在 PATH 中解析可执行文件
  - 将 stdout 逐行写入日志（INFO），stderr 逐行写入日志（WARNING）
  - 可选地捕获输出并向 stdin 写入文本
  - 退出码非零时抛出 ToolError
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Iterable, Sequence
from typing import Awaitable, Protocol

from pydantic import BaseModel, Field

from errors import ToolError

logger = logging.getLogger(__name__)

_REDACTED = "[REDACTED]"


class ToolOutput(BaseModel):
    """Captured result of one tool invocation."""
    tool: str
    exit_code: int
    stdout: list[str] = Field(default_factory=list)  # 仅在 capture_output=True 时填充
    stderr: list[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.stdout)


class ToolRunner(Protocol):
    """Signature shared by run_tool() and test fakes."""

    def __call__(
        self,
        tool: str,
        executables: Sequence[str],
        args: Sequence[str],
        *,
        cwd: str | os.PathLike[str] | None = None,
        capture_output: bool = False,
        stdin_text: str | None = None,
        secrets: Iterable[str] = (),
    ) -> Awaitable[ToolOutput]: ...


def resolve_executable(tool: str, executables: Sequence[str]) -> str:
    """
    Return the first candidate found on PATH (absolute paths are accepted as-is).
    返回 PATH 中找到的第一个候选可执行文件。
    """
    for candidate in executables:
        candidate = candidate.strip()
        if not candidate:
            continue
        resolved = shutil.which(candidate)
        if resolved:
            return resolved
    raise ToolError(tool, message=f"Couldn't resolve path for '{tool}' (tried: {', '.join(executables)})")


def render_command(tool: str, args: Sequence[str], secrets: Iterable[str] = ()) -> str:
    hidden = {s for s in secrets if s}
    return " ".join([tool, *(_REDACTED if a in hidden else a for a in args)])


def _missing_pipe(tool: str, name: str) -> ToolError:
    return ToolError(tool, message=f"{tool} was started without its {name} pipe")


async def _feed(stream: asyncio.StreamWriter | None, tool: str, text: str) -> None:
    if stream is None:
        raise _missing_pipe(tool, "stdin")
    try:
        stream.write(text.encode("utf-8"))
        await stream.drain()
    except (BrokenPipeError, ConnectionResetError):
        # 进程可能在读取 stdin 之前就已退出，退出码会说明结果
        logger.debug("[Process] %s closed stdin early", tool)
    finally:
        stream.close()


async def _pump(
    stream: asyncio.StreamReader | None,
    tool: str,
    level: int,
    sink: list[str] | None,
) -> None:
    if stream is None:
        raise _missing_pipe(tool, "output")
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        logger.log(level, "[%s] %s", tool, line)
        if sink is not None:
            sink.append(line)


async def run_tool(
    tool: str,
    executables: Sequence[str],
    args: Sequence[str],
    *,
    cwd: str | os.PathLike[str] | None = None,
    capture_output: bool = False,
    stdin_text: str | None = None,
    secrets: Iterable[str] = (),
) -> ToolOutput:
    """
    Run `tool` with `args` and wait for it to exit.
    运行工具并等待其退出。

    `secrets` are replaced with a placeholder in the logged command line.
    `secrets` 中的参数在日志命令行中会被替换为占位符。
    """
    secrets = tuple(secrets)
    executable = resolve_executable(tool, executables)
    logger.info("[Process] %s", render_command(tool, args, secrets))

    process = await asyncio.create_subprocess_exec(
        executable,
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE if stdin_text is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    if stdin_text is not None:
        await _feed(process.stdin, tool, stdin_text)

    stdout: list[str] = []
    stderr: list[str] = []
    await asyncio.gather(
        _pump(process.stdout, tool, logging.INFO, stdout if capture_output else None),
        _pump(process.stderr, tool, logging.WARNING, stderr if capture_output else None),
    )
    exit_code = await process.wait()

    if exit_code != 0:
        raise ToolError(tool, exit_code)
    return ToolOutput(tool=tool, exit_code=exit_code, stdout=stdout, stderr=stderr)
