"""
NuGet adapters - Registry queries, dependency downloads, packing and pushing.
NuGet 适配器 —— 查询包版本、下载依赖包、打包与推送。

NuGetClient talks to the NuGet v3 HTTP APIs over httpx:
  - registration index  -> published versions of a package id
  - flat container      -> .nupkg downloads (primary source, then BepInEx)

PackagePublisher builds .nupkg archives locally (a zip with a nuspec, OPC
content types and relationships) and pushes them with `dotnet nuget push`.

NuGetClient 通过 httpx 调用 NuGet v3 HTTP API：
  - registration 索引 -> 包的已发布版本
  - flat container     -> 下载 .nupkg（先主源，失败后 BepInEx 源）
PackagePublisher 在本地生成 .nupkg（包含 nuspec、OPC 内容类型与关系文件的 zip），并用 `dotnet nuget push` 推送。
"""

from __future__ import annotations

import asyncio
import logging
import re
import zipfile
from collections.abc import Iterable, Sequence
from pathlib import Path, PurePosixPath
from typing import Any
from xml.etree import ElementTree as ET

import httpx
from pydantic import BaseModel, Field

import config
from errors import PackageNotFoundError
from schema import FrameworkTarget, PackageVersionInfo
from services.frameworks import nearest_framework
from services.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)

ASSEMBLY_ITEM_GROUPS = ("lib", "ref", "build")

NUSPEC_NAMESPACE = "http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd"
CONTENT_TYPES_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/content-types"
RELATIONSHIPS_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/relationships"
MANIFEST_RELATIONSHIP = "http://schemas.microsoft.com/packaging/2010/07/manifest"


# ======================================================================
# Pure helpers
# 纯函数辅助
# ======================================================================

def next_revision_number(
    versions: Iterable[PackageVersionInfo],
    package_id: str,
    version_base: str,
    prefix: str = config.VERSION_DISCRIMINATOR_PREFIX,
) -> int:
    """
    Next `<version_base>-<prefix>.<n>` revision for `package_id`: max(n) + 1, or 0 when none exist.
    计算下一个修订号：已有最大修订号 + 1，没有时为 0。
    """
    pattern = re.compile(rf"^{re.escape(version_base)}-{re.escape(prefix)}\.(\d+)$", re.IGNORECASE)
    revisions = [
        int(match.group(1))
        for info in versions
        if info.package_id.casefold() == package_id.casefold()
        for match in [pattern.match(info.version)]
        if match
    ]
    return max(revisions) + 1 if revisions else 0


def package_assembly_names(nupkg: str | Path, tfm: str) -> set[str]:
    """
    File names of the .dll items a package supplies to `tfm`, taken from the
    nearest-framework group of each of lib/, ref/ and build/.

    返回包为 `tfm` 提供的 .dll 文件名，分别取 lib/、ref/、build/ 中最近框架分组的条目。
    """
    groups: dict[str, dict[str, list[str]]] = {kind: {} for kind in ASSEMBLY_ITEM_GROUPS}
    with zipfile.ZipFile(nupkg) as archive:
        for name in archive.namelist():
            parts = PurePosixPath(name).parts
            if len(parts) < 2 or parts[0].lower() not in groups:
                continue
            # lib/foo.dll 没有框架目录，视为与框架无关
            folder = parts[1] if len(parts) > 2 else "any"
            groups[parts[0].lower()].setdefault(folder, []).append(name)

    names: set[str] = set()
    for by_framework in groups.values():
        chosen = nearest_framework(tfm, by_framework.keys())
        if chosen is None:
            continue
        names.update(
            PurePosixPath(item).name
            for item in by_framework[chosen]
            if PurePosixPath(item).suffix.lower() == ".dll"
        )
    return names


# ======================================================================
# Registry / download client
# 包源客户端
# ======================================================================

class NuGetClient:
    """
    Async client for the NuGet v3 registration and flat-container APIs.
    NuGet v3 registration 与 flat-container API 的异步客户端。
    """

    def __init__(
        self,
        registration_url: str = config.NUGET_REGISTRATION_URL,
        flat_container_urls: Sequence[str] | None = None,
        packages_dir: str | Path = config.NUGET_PACKAGES_DIR,
        timeout: float = config.HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.registration_url = registration_url.rstrip("/")
        self.flat_container_urls = [
            u.rstrip("/") for u in (flat_container_urls or (config.NUGET_FLAT_CONTAINER_URL, config.BEPINEX_FLAT_CONTAINER_URL))
        ]
        self.packages_dir = Path(packages_dir)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> NuGetClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def list_versions(self, package_id: str) -> list[PackageVersionInfo]:
        """
        Every listed version of `package_id`. Unknown packages yield an empty list.
        返回 `package_id` 的所有已列出版本；未知包返回空列表。
        """
        logger.info("[NuGet] Fetching index for package '%s'", package_id)
        response = await self._client.get(f"{self.registration_url}/{package_id.lower()}/index.json")
        if response.status_code == 404:
            return []
        response.raise_for_status()

        versions: list[PackageVersionInfo] = []
        for page in response.json().get("items", []):
            leaves = page.get("items")
            if leaves is None:
                # 大型包的索引页不内联条目，需要按 @id 单独获取
                page_response = await self._client.get(page["@id"])
                page_response.raise_for_status()
                leaves = page_response.json().get("items", [])
            for leaf in leaves:
                entry = leaf.get("catalogEntry", {})
                if entry.get("listed", True) is False:
                    continue
                versions.append(PackageVersionInfo(
                    package_id=entry.get("id", package_id),
                    version=entry["version"],
                    published=entry.get("published"),
                ))
        logger.debug("[NuGet] %s: %d versions", package_id, len(versions))
        return versions

    def cached_package_path(self, package_id: str, version: str) -> Path:
        pid, ver = package_id.lower(), version.lower()
        return self.packages_dir / pid / ver / f"{pid}.{ver}.nupkg"

    async def download(self, package_id: str, version: str) -> Path:
        """
        Download a package into the local packages folder, trying each source in turn.
        依次尝试各包源，将包下载到本地包目录。
        """
        destination = self.cached_package_path(package_id, version)
        if destination.exists():
            logger.debug("[NuGet] %s %s already cached", package_id, version)
            return destination

        pid, ver = package_id.lower(), version.lower()
        for base in self.flat_container_urls:
            url = f"{base}/{pid}/{ver}/{pid}.{ver}.nupkg"
            response = await self._client.get(url)
            if response.status_code == 404:
                logger.debug("[NuGet] %s %s not found at %s", package_id, version, base)
                continue
            response.raise_for_status()
            await asyncio.to_thread(_write_bytes, destination, response.content)
            logger.info("[NuGet] Downloaded %s %s from %s", package_id, version, base)
            return destination

        raise PackageNotFoundError(f"Package {package_id} {version} was not found on any configured source")


def _write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_suffix(path.suffix + ".part")
    partial.write_bytes(content)
    partial.replace(path)


# ======================================================================
# Packing / pushing
# 打包与推送
# ======================================================================

class PackageManifest(BaseModel):
    """
    Metadata written into the .nuspec of a generated package.
    写入生成包 .nuspec 的元数据。
    """
    id: str
    version: str
    authors: list[str] = Field(default_factory=list)
    description: str = ""
    project_url: str = config.PROJECT_URL
    dependency_groups: list[FrameworkTarget] = Field(default_factory=list)

    def to_nuspec(self) -> bytes:
        # xmlns 作为普通属性写入，不修改 ET 的全局命名空间表
        package = ET.Element("package", xmlns=NUSPEC_NAMESPACE)
        metadata = ET.SubElement(package, "metadata")
        for tag, value in (
            ("id", self.id),
            ("version", self.version),
            ("authors", ", ".join(self.authors)),
            ("description", self.description),
            ("projectUrl", self.project_url),
        ):
            ET.SubElement(metadata, tag).text = value

        if self.dependency_groups:
            dependencies = ET.SubElement(metadata, "dependencies")
            for target in self.dependency_groups:
                group = ET.SubElement(dependencies, "group", targetFramework=target.tfm)
                for dependency in target.dependencies:
                    ET.SubElement(group, "dependency", id=dependency.name, version=dependency.version)

        ET.indent(package)
        return ET.tostring(package, encoding="utf-8", xml_declaration=True)


def _content_types(extensions: Iterable[str]) -> bytes:
    types = ET.Element("Types", xmlns=CONTENT_TYPES_NAMESPACE)
    ET.SubElement(types, "Default", Extension="rels",
                  ContentType="application/vnd.openxmlformats-package.relationships+xml")
    for extension in sorted(set(extensions) - {"rels"}):
        ET.SubElement(types, "Default", Extension=extension, ContentType="application/octet")
    return ET.tostring(types, encoding="utf-8", xml_declaration=True)


def _relationships(nuspec_name: str) -> bytes:
    relationships = ET.Element("Relationships", xmlns=RELATIONSHIPS_NAMESPACE)
    ET.SubElement(relationships, "Relationship",
                  Type=MANIFEST_RELATIONSHIP, Target=f"/{nuspec_name}", Id="R0")
    return ET.tostring(relationships, encoding="utf-8", xml_declaration=True)


class PackagePublisher:
    """
    Builds .nupkg archives from a package source directory and pushes them.
    从包源目录构建 .nupkg 并推送。
    """

    def __init__(
        self,
        source_url: str = config.NUGET_SOURCE_URL,
        executables: Sequence[str] | None = None,
        runner: ToolRunner = run_tool,
    ):
        self.source_url = source_url
        self._executables = list(executables or config.DOTNET_EXECUTABLES)
        self._runner = runner

    def pack(self, source_dir: str | Path, manifest: PackageManifest, destination: str | Path) -> Path:
        """
        Write `destination` containing the nuspec plus every file under `source_dir`/ref.
        Blocking; call through asyncio.to_thread from coroutines.

        生成包含 nuspec 与 `source_dir`/ref 下全部文件的 .nupkg。该方法为阻塞调用，协程中请经由 asyncio.to_thread 调用。
        """
        source_dir = Path(source_dir)
        destination = Path(destination)
        files = sorted(p for p in (source_dir / "ref").rglob("*") if p.is_file())
        nuspec_name = f"{manifest.id}.nuspec"
        extensions = {"nuspec", *(p.suffix.lstrip(".").lower() for p in files if p.suffix)}

        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(nuspec_name, manifest.to_nuspec())
            for path in files:
                archive.write(path, path.relative_to(source_dir).as_posix())
            archive.writestr("[Content_Types].xml", _content_types(extensions))
            archive.writestr("_rels/.rels", _relationships(nuspec_name))

        logger.info("[NuGet] Packed %s %s (%d files)", manifest.id, manifest.version, len(files))
        return destination

    async def push(self, nupkg: str | Path, api_key: str) -> None:
        """
        Push one package; a version that already exists is a no-op.
        推送单个包；已存在的版本不做任何处理。
        """
        await self._runner(
            "dotnet",
            self._executables,
            [
                "nuget", "push", str(nupkg),
                "--source", self.source_url,
                "--api-key", api_key,
                "--skip-duplicate",
            ],
            secrets=(api_key,),
        )
