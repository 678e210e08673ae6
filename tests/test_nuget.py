"""
NuGet 适配器测试 — 验证：
  1. 修订号计算：<游戏版本>-ngd.<n>，n = 已有最大值 + 1，没有时为 0
  2. 最近框架选择与依赖包程序集枚举（lib/ref/build）
  3. registration 索引解析（内联页、外链页、404、未列出版本），使用 httpx.MockTransport
  4. 主源 404 时回退到 BepInEx 源；全部失败抛出 PackageNotFoundError
  5. 生成的 .nupkg 结构与 push 参数

运行方式:
    python -m pytest tests/test_nuget.py -v
"""

from __future__ import annotations

import zipfile
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from errors import PackageNotFoundError
from schema import FrameworkTarget, NuGetDependency, PackageVersionInfo
from services.frameworks import Framework, nearest_framework
from services.nuget import NuGetClient, PackageManifest, PackagePublisher, next_revision_number, package_assembly_names
from services.process import ToolOutput


def _v(version: str, package_id: str = "LethalCompany.GameLibs.Steam") -> PackageVersionInfo:
    return PackageVersionInfo(package_id=package_id, version=version)


def _nupkg(path, names: list[str]):
    with zipfile.ZipFile(path, "w") as archive:
        for name in names:
            archive.writestr(name, b"")
    return path


class TestRevisionNumbers:

    def test_no_existing_revision_starts_at_zero(self):
        assert next_revision_number([], "LethalCompany.GameLibs.Steam", "50.0.0") == 0

    def test_max_plus_one(self):
        versions = [_v("50.0.0-ngd.0"), _v("50.0.0-ngd.3"), _v("50.0.0-ngd.1"), _v("49.0.0-ngd.7")]
        assert next_revision_number(versions, "LethalCompany.GameLibs.Steam", "50.0.0") == 4

    def test_other_package_ids_and_prefixes_ignored(self):
        versions = [
            _v("50.0.0-ngd.5", package_id="Other.Package"),
            _v("50.0.0-beta.9"),
            _v("50.0.0.1-ngd.2"),
        ]
        assert next_revision_number(versions, "LethalCompany.GameLibs.Steam", "50.0.0") == 0

    def test_package_id_match_is_case_insensitive(self):
        versions = [_v("1.0.0-ngd.2", package_id="lethalcompany.gamelibs.steam")]
        assert next_revision_number(versions, "LethalCompany.GameLibs.Steam", "1.0.0") == 3


class TestFrameworks:

    def test_parse_monikers(self):
        assert Framework.parse("net472").version == (4, 7, 2)
        assert Framework.parse("netstandard2.0") == Framework(".NETStandard", (2,))
        assert Framework.parse("net6.0").family == ".NETCoreApp"
        assert Framework.parse("any").family == "Any"

    def test_same_family_highest_compatible(self):
        assert nearest_framework("net472", ["net35", "net45", "net48"]) == "net45"

    def test_netstandard_fallback(self):
        assert nearest_framework("net472", ["netstandard2.0", "netstandard2.1"]) == "netstandard2.0"
        assert nearest_framework("netstandard2.1", ["net45", "netstandard2.0", "netstandard1.3"]) == "netstandard2.0"

    def test_same_family_preferred_over_netstandard(self):
        assert nearest_framework("net6.0", ["netstandard2.1", "net5.0"]) == "net5.0"

    def test_incompatible_returns_none(self):
        assert nearest_framework("netstandard2.0", ["net472", "net6.0"]) is None

    def test_assembly_names_use_nearest_group(self, tmp_path):
        nupkg = _nupkg(tmp_path / "unityengine.modules.2022.3.9.nupkg", [
            "lib/net45/UnityEngine.dll",
            "lib/netstandard2.0/UnityEngine.dll",
            "lib/netstandard2.0/UnityEngine.CoreModule.dll",
            "lib/netstandard2.0/UnityEngine.xml",
            "ref/netstandard2.1/UnityEngine.UI.dll",
            "build/UnityEngine.Modules.targets",
            "UnityEngine.Modules.nuspec",
        ])

        assert package_assembly_names(nupkg, "netstandard2.0") == {"UnityEngine.dll", "UnityEngine.CoreModule.dll"}
        assert package_assembly_names(nupkg, "netstandard2.1") == {
            "UnityEngine.dll", "UnityEngine.CoreModule.dll", "UnityEngine.UI.dll",
        }


def _registration_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/missing.package/index.json"):
        return httpx.Response(404)
    if path.endswith("/game.gamelibs/index.json"):
        return httpx.Response(200, json={"items": [
            {"items": [
                {"catalogEntry": {"id": "Game.GameLibs", "version": "1.0.0-ngd.0",
                                  "published": "2024-01-02T03:04:05+00:00"}},
                {"catalogEntry": {"id": "Game.GameLibs", "version": "1.0.0-ngd.1",
                                  "published": "1900-01-01T00:00:00+00:00", "listed": False}},
            ]},
            {"@id": "https://registry.test/v3/registration/game.gamelibs/page/2.json"},
        ]})
    if path.endswith("/page/2.json"):
        return httpx.Response(200, json={"items": [
            {"catalogEntry": {"id": "Game.GameLibs", "version": "2.0.0-ngd.0",
                              "published": "2024-06-01T00:00:00Z"}},
        ]})
    return httpx.Response(500)


class TestNuGetClient:

    @pytest.mark.asyncio
    async def test_list_versions_follows_pages(self, tmp_path):
        client = NuGetClient(
            registration_url="https://registry.test/v3/registration",
            packages_dir=tmp_path,
            transport=httpx.MockTransport(_registration_handler),
        )
        async with client:
            versions = await client.list_versions("Game.GameLibs")

        assert [v.version for v in versions] == ["1.0.0-ngd.0", "2.0.0-ngd.0"], "未列出的版本被忽略"
        assert versions[0].published == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_unknown_package_is_empty(self, tmp_path):
        async with NuGetClient(
            registration_url="https://registry.test/v3/registration",
            packages_dir=tmp_path,
            transport=httpx.MockTransport(_registration_handler),
        ) as client:
            assert await client.list_versions("Missing.Package") == []

    @pytest.mark.asyncio
    async def test_download_falls_back_to_second_source(self, tmp_path):
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.host)
            if request.url.host == "primary.test":
                return httpx.Response(404)
            return httpx.Response(200, content=b"PK-nupkg")

        async with NuGetClient(
            flat_container_urls=["https://primary.test/v3", "https://bepinex.test/v3/package"],
            packages_dir=tmp_path,
            transport=httpx.MockTransport(handler),
        ) as client:
            path = await client.download("BepInEx.Core", "5.4.21")
            again = await client.download("BepInEx.Core", "5.4.21")

        assert path == tmp_path / "bepinex.core" / "5.4.21" / "bepinex.core.5.4.21.nupkg"
        assert path.read_bytes() == b"PK-nupkg"
        assert again == path
        assert requested == ["primary.test", "bepinex.test"], "已缓存的包不会重复下载"

    @pytest.mark.asyncio
    async def test_download_not_found_anywhere(self, tmp_path):
        async with NuGetClient(
            flat_container_urls=["https://a.test", "https://b.test"],
            packages_dir=tmp_path,
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        ) as client:
            with pytest.raises(PackageNotFoundError):
                await client.download("Nope", "1.0.0")


class TestPackagePublisher:

    def test_pack_layout(self, tmp_path):
        source = tmp_path / "Game.GameLibs"
        (source / "ref" / "netstandard2.0").mkdir(parents=True)
        (source / "ref" / "netstandard2.0" / "Assembly-CSharp.dll").write_bytes(b"stub")
        manifest = PackageManifest(
            id="Game.GameLibs",
            version="1.2.3-ngd.0",
            authors=["lordfirespeed"],
            description="Game libraries",
            dependency_groups=[FrameworkTarget(
                tfm="netstandard2.0",
                dependencies=[NuGetDependency(name="UnityEngine.Modules", version="2022.3.9")],
            )],
        )

        archive_path = PackagePublisher().pack(source, manifest, tmp_path / "Game.GameLibs.nupkg")

        with zipfile.ZipFile(archive_path) as archive:
            names = set(archive.namelist())
            nuspec = archive.read("Game.GameLibs.nuspec").decode()
            content_types = archive.read("[Content_Types].xml").decode()
            rels = archive.read("_rels/.rels").decode()
        assert names == {
            "Game.GameLibs.nuspec",
            "ref/netstandard2.0/Assembly-CSharp.dll",
            "[Content_Types].xml",
            "_rels/.rels",
        }
        assert "<id>Game.GameLibs</id>" in nuspec
        assert "<version>1.2.3-ngd.0</version>" in nuspec
        assert 'targetFramework="netstandard2.0"' in nuspec
        assert 'id="UnityEngine.Modules"' in nuspec
        assert 'Extension="dll"' in content_types
        assert "/Game.GameLibs.nuspec" in rels

    @pytest.mark.asyncio
    async def test_push_arguments(self, tmp_path):
        runner = AsyncMock(return_value=ToolOutput(tool="dotnet", exit_code=0))
        publisher = PackagePublisher(source_url="https://nuget.test/v3/index.json", runner=runner)

        await publisher.push(tmp_path / "a.nupkg", "secret-key")

        args, kwargs = runner.call_args
        assert args[0] == "dotnet"
        assert args[2] == [
            "nuget", "push", str(tmp_path / "a.nupkg"),
            "--source", "https://nuget.test/v3/index.json",
            "--api-key", "secret-key",
            "--skip-duplicate",
        ]
        assert kwargs["secrets"] == ("secret-key",)
