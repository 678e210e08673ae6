"""
SteamCMD client - App info queries and depot downloads.
SteamCMD 客户端 —— 查询应用信息与下载 depot。

SteamCMD is driven non-interactively:
    steamcmd +login <user> <commands...> +quit
with "\\x04\\n" (EOF) written to stdin so a password prompt cannot block.

SteamCMD 以非交互方式驱动，stdin 写入 EOF，避免密码提示阻塞进程。

`+app_info_print` prints log noise followed by a line starting with "AppID",
then a KeyValues (VDF) block. The block is extracted by brace-depth tracking
and decoded with the `vdf` library.
`+app_info_print` 先输出日志，然后是以 "AppID" 开头的行，接着是 KeyValues（VDF）块。
通过大括号深度跟踪截取该块，再用 `vdf` 库解码。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

import vdf
from pydantic import ValidationError

import config
from errors import OutputFormatError
from schema import SteamAppInfo
from services.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)

APP_INFO_MARKER = "AppID"
_DOWNLOAD_COMPLETE = re.compile(r'Depot download complete\s*:\s*"(?P<path>[^"]+)"')


def extract_app_info_block(lines: Iterable[str]) -> str:
    """
    Return the KeyValues text that follows the "AppID" line.
    返回 "AppID" 行之后的 KeyValues 文本。

    Raises OutputFormatError when the marker is missing or the block never closes.
    缺少标记行或块未闭合时抛出 OutputFormatError。
    """
    within = False
    depth = 0
    block: list[str] = []

    for line in lines:
        if not within:
            if line.startswith(APP_INFO_MARKER):
                within = True
            continue

        block.append(line)
        stripped = line.strip()
        if stripped == "{":
            depth += 1
        elif stripped == "}":
            depth -= 1
            if depth == 0:
                return "\n".join(block)

    if not within:
        raise OutputFormatError("Couldn't find app info in SteamCMD output.")
    raise OutputFormatError("SteamCMD app info block was truncated.")


def decode_app_info(text: str) -> SteamAppInfo:
    """
    Decode an extracted KeyValues block into SteamAppInfo.
    将截取的 KeyValues 块解码为 SteamAppInfo。
    """
    try:
        tree = vdf.loads(text)
    except SyntaxError as exc:
        raise OutputFormatError(f"SteamCMD app info is not valid KeyValues: {exc}") from exc

    if len(tree) != 1:
        raise OutputFormatError(f"Expected a single app block, found {len(tree)}")
    app_key, body = next(iter(tree.items()))
    if not isinstance(body, dict):
        raise OutputFormatError(f"App block '{app_key}' has no body")

    try:
        return SteamAppInfo.from_key_values(app_key, body)
    except (KeyError, ValueError, TypeError, ValidationError) as exc:
        raise OutputFormatError(f"Unexpected app info shape for app {app_key}: {exc}") from exc


def parse_download_marker(lines: Iterable[str]) -> Path:
    """
    Find the 'Depot download complete : "<path>"' line and return the path.
    查找下载完成标记行并返回本地路径。
    """
    for line in lines:
        match = _DOWNLOAD_COMPLETE.search(line)
        if match:
            return Path(match.group("path"))
    raise OutputFormatError("SteamCMD output did not report a completed depot download.")


class SteamCmdClient:
    """
    Thin adapter over the steamcmd executable.
    steamcmd 可执行程序的轻量适配器。
    """

    def __init__(
        self,
        username: str,
        executables: Sequence[str] | None = None,
        runner: ToolRunner = run_tool,
    ):
        self.username = username
        self._executables = list(executables or config.STEAMCMD_EXECUTABLES)
        self._runner = runner

    async def _run(self, *commands: str) -> list[str]:
        args = ["+login", self.username, *commands, "+quit"]
        output = await self._runner(
            "SteamCMD",
            self._executables,
            args,
            capture_output=True,
            stdin_text="\x04\n",
            secrets=(self.username,),
        )
        return output.stdout

    async def app_info(self, app_id: int) -> SteamAppInfo:
        logger.info("[SteamCMD] Getting app info for %d", app_id)
        lines = await self._run("+app_info_print", str(app_id))
        info = decode_app_info(extract_app_info_block(lines))
        logger.debug("[SteamCMD] App %d '%s': %d depots, branches %s",
                     info.app_id, info.name, len(info.depots), sorted(info.branches))
        return info

    async def download_depot(self, app_id: int, depot_id: int, manifest_id: int) -> Path:
        """
        Download one depot manifest; returns the directory SteamCMD wrote it to.
        下载指定 depot 的 manifest，返回 SteamCMD 写入的目录。
        """
        logger.info("[SteamCMD] Downloading depot %d (manifest %d)", depot_id, manifest_id)
        lines = await self._run("+download_depot", str(app_id), str(depot_id), str(manifest_id))
        return parse_download_marker(lines)
