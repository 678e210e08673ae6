"""
SteamCMD 适配器测试 — 验证 app info 块截取、KeyValues 解码、下载完成标记解析，
以及客户端传给进程执行器的参数（使用 AsyncMock 代替真实 steamcmd）。

运行方式:
    python -m pytest tests/test_steamcmd.py -v
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from errors import OutputFormatError
from services.process import ToolOutput
from services.steamcmd import SteamCmdClient, decode_app_info, extract_app_info_block, parse_download_marker

APP_INFO_OUTPUT = """\
Redirecting stderr to '/home/runner/Steam/logs/stderr.txt'
Logging in user 'anonymous' to Steam Public...OK
Waiting for user info...OK
AppID : 1966720, change number : 24512345/0, last change : Tue Jan 30 20:01:11 2024
"1966720"
{
\t"common"
\t{
\t\t"name"\t\t"Lethal Company"
\t\t"type"\t\t"Game"
\t}
\t"depots"
\t{
\t\t"1966721"
\t\t{
\t\t\t"manifests"
\t\t\t{
\t\t\t\t"public"
\t\t\t\t{
\t\t\t\t\t"gid"\t\t"7525563530173177311"
\t\t\t\t\t"size"\t\t"1166163776"
\t\t\t\t}
\t\t\t}
\t\t}
\t\t"1966722"
\t\t{
\t\t\t"manifests"
\t\t\t{
\t\t\t\t"public"\t\t"18446744073709551000"
\t\t\t}
\t\t}
\t\t"baselanguages"\t\t"english"
\t\t"branches"
\t\t{
\t\t\t"public"
\t\t\t{
\t\t\t\t"buildid"\t\t"13317035"
\t\t\t\t"timeupdated"\t\t"1706644871"
\t\t\t}
\t\t}
\t}
}
Unloading Steam API...OK
"""


class TestAppInfoExtraction:

    def test_block_stops_at_matching_brace(self):
        block = extract_app_info_block(APP_INFO_OUTPUT.splitlines())
        assert block.startswith('"1966720"')
        assert block.rstrip().endswith("}")
        assert "Unloading" not in block

    def test_missing_marker(self):
        with pytest.raises(OutputFormatError, match="Couldn't find app info"):
            extract_app_info_block(["Logging in...", "FAILED (Invalid Password)"])

    def test_truncated_block(self):
        lines = APP_INFO_OUTPUT.splitlines()[:12]
        with pytest.raises(OutputFormatError, match="truncated"):
            extract_app_info_block(lines)

    def test_decode_typed_app_info(self):
        info = decode_app_info(extract_app_info_block(APP_INFO_OUTPUT.splitlines()))

        assert info.app_id == 1966720
        assert info.name == "Lethal Company"
        assert set(info.depots) == {1966721, 1966722}, "baselanguages 等非 depot 键被忽略"
        assert info.depots[1966721].manifests["public"].manifest_id == 7525563530173177311
        assert info.depots[1966722].manifests["public"].manifest_id == 18446744073709551000, "manifest id 超出 int64"
        assert info.branches["public"].build_id == 13317035
        assert info.branches["public"].time_updated == 1706644871

    def test_decode_rejects_bad_shape(self):
        text = '"1"\n{\n"depots"\n{\n"branches"\n{\n"public"\n{\n"timeupdated" "1"\n}\n}\n}\n}'
        with pytest.raises(OutputFormatError):
            decode_app_info(text)


class TestDownloadMarker:

    def test_marker_path(self):
        lines = [
            "Downloading depot 1966721 (1112 MB) ...",
            'Depot download complete : "/home/runner/Steam/steamapps/content/app_1966720/depot_1966721" (32 files, manifest 7525563530173177311)',
        ]
        assert parse_download_marker(lines) == Path("/home/runner/Steam/steamapps/content/app_1966720/depot_1966721")

    def test_missing_marker(self):
        with pytest.raises(OutputFormatError):
            parse_download_marker(["Error! Download failed: Access Denied"])


class TestSteamCmdClient:

    @pytest.mark.asyncio
    async def test_app_info_invocation(self):
        runner = AsyncMock(return_value=ToolOutput(
            tool="SteamCMD", exit_code=0, stdout=APP_INFO_OUTPUT.splitlines(),
        ))
        client = SteamCmdClient("ci-user", executables=["steamcmd"], runner=runner)

        info = await client.app_info(1966720)

        assert info.name == "Lethal Company"
        args, kwargs = runner.call_args
        assert args[0] == "SteamCMD"
        assert args[2] == ["+login", "ci-user", "+app_info_print", "1966720", "+quit"]
        assert kwargs["stdin_text"] == "\x04\n"
        assert kwargs["capture_output"] is True
        assert "ci-user" in kwargs["secrets"], "用户名在日志中应被隐藏"

    @pytest.mark.asyncio
    async def test_download_depot_invocation(self):
        runner = AsyncMock(return_value=ToolOutput(
            tool="SteamCMD", exit_code=0, stdout=['Depot download complete : "/tmp/depot_5" (1 files)'],
        ))
        client = SteamCmdClient("ci-user", runner=runner)

        path = await client.download_depot(10, 11, 12345678901234567890)

        assert path == Path("/tmp/depot_5")
        assert runner.call_args.args[2] == ["+login", "ci-user", "+download_depot", "10", "11", "12345678901234567890", "+quit"]
