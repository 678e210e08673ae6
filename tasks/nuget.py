"""
NuGet tasks - Deployed versions, staleness check, dependencies, packing, pushing.
NuGet 任务 —— 已发布版本、过期检查、依赖下载、打包与推送。
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path

import config
from context.build_context import BuildContext
from errors import ConfigurationError
from schema import GameVersionEntry, PackageVersionInfo
from services.nuget import PackageManifest, next_revision_number, package_assembly_names
from tasks.base import BuildTask

logger = logging.getLogger(__name__)

GITHUB_OUTPUT_NAME = "outdated-version-buildIds"
DESCRIPTION_FOOTER = "\n\nGenerated and managed by GameLib Dehumidifier."


def version_outdated(
    entry: GameVersionEntry,
    package_ids: Iterable[str],
    deployed: Mapping[str, list[PackageVersionInfo]],
    last_version_change: datetime,
) -> bool:
    """
    An entry is outdated when, for any package id, no deployed version for that
    game version was published at or after the pipeline's last version change.

    若任一包 id 下，该游戏版本的已发布版本中没有任何一个发布于流水线最近一次版本变化之后（含），则该条目过期。
    """
    for package_id in package_ids:
        published = [
            info.published
            for info in deployed.get(package_id, [])
            if info.version.startswith(entry.game_version) and info.published is not None
        ]
        if not published or max(published) < last_version_change:
            return True
    return False


def write_github_output(build_ids: list[int]) -> None:
    payload = json.dumps(build_ids, separators=(",", ":"))
    output_file = os.getenv("GITHUB_OUTPUT", "").strip()
    if output_file:
        with open(output_file, "a", encoding="utf-8") as handle:
            handle.write(f"{GITHUB_OUTPUT_NAME}<<EOF\n{payload}\nEOF\n")
    else:
        print(f"::set-output name={GITHUB_OUTPUT_NAME}::{payload}")


class ListDeployedPackageVersionsTask(BuildTask):
    name = "ListDeployedPackageVersions"
    description = "Fetch published versions of every package id"
    dependencies = ("Prepare",)

    async def run(self, context: BuildContext) -> None:
        nuget = context.require("nuget")
        package_ids = context.game_metadata.package_ids
        results = await asyncio.gather(*(nuget.list_versions(pid) for pid in package_ids))
        context.deployed_packages = dict(zip(package_ids, results))


class CheckPackageVersionsUpToDateTask(BuildTask):
    name = "CheckPackageVersionsUpToDate"
    description = "Find version entries whose packages need publishing"
    dependencies = ("HandleUnknownSteamBuild", "ListDeployedPackageVersions")

    async def run(self, context: BuildContext) -> None:
        versioner = context.require("versioner")
        last_change = await versioner.last_version_change()
        package_ids = context.game_metadata.package_ids

        outdated = [
            entry.build_id
            for entry in sorted(context.game_versions.values())
            if version_outdated(entry, package_ids, context.deployed_packages, last_change)
        ]
        context.outdated_build_ids = outdated
        logger.info("[NuGet] Outdated builds: %s", outdated or "none")
        await asyncio.to_thread(write_github_output, outdated)

        # 未指定 --build 时视为需要构建；下游读取 target_version 时会给出明确的配置错误
        context.package_up_to_date = context.build_id is not None and context.build_id not in outdated
        if context.package_up_to_date:
            logger.info("[NuGet] Packages for build %s are up to date", context.build_id)


class DownloadNuGetDependenciesTask(BuildTask):
    name = "DownloadNuGetDependencies"
    description = "Download the dependency packages of the requested build"
    dependencies = ("Prepare",)

    async def run(self, context: BuildContext) -> None:
        nuget = context.require("nuget")
        wanted = list(dict.fromkeys(
            (dep.name, dep.version)
            for target in context.target_version.framework_targets
            for dep in target.dependencies
        ))
        paths = await asyncio.gather(*(nuget.download(name, version) for name, version in wanted))
        context.dependency_packages = dict(zip(wanted, paths))


class CacheDependencyAssemblyNamesTask(BuildTask):
    name = "CacheDependencyAssemblyNames"
    description = "Collect assembly names supplied by each target's dependencies"
    dependencies = ("DownloadNuGetDependencies",)

    async def run(self, context: BuildContext) -> None:
        async def names_for(tfm: str, packages: list[Path]) -> frozenset[str]:
            per_package = await asyncio.gather(
                *(asyncio.to_thread(package_assembly_names, path, tfm) for path in packages)
            )
            return frozenset().union(*per_package)

        targets = context.target_version.framework_targets
        names = await asyncio.gather(*(
            names_for(t.tfm, [context.dependency_packages[(d.name, d.version)] for d in t.dependencies])
            for t in targets
        ))
        context.framework_dependency_assemblies = {t.tfm: n for t, n in zip(targets, names)}
        for target, assembly_names in zip(targets, names):
            logger.debug("[NuGet] %s: dependencies supply %s", target.tfm, sorted(assembly_names))


class MakePackagesTask(BuildTask):
    name = "MakePackages"
    description = "Pack one .nupkg per distribution depot"
    dependencies = ("ListDeployedPackageVersions", "ProcessAssemblies")

    def should_run(self, context: BuildContext) -> bool:
        return not context.package_up_to_date

    def manifest_for(self, context: BuildContext, package_id: str) -> PackageManifest:
        target = context.target_version
        metadata = context.game_metadata
        all_versions = [info for versions in context.deployed_packages.values() for info in versions]
        revision = next_revision_number(all_versions, package_id, target.game_version)
        return PackageManifest(
            id=package_id,
            version=f"{target.game_version}-{config.VERSION_DISCRIMINATOR_PREFIX}.{revision}",
            authors=metadata.nuget.authors or config.DEFAULT_AUTHORS,
            description=metadata.nuget.description + DESCRIPTION_FOOTER,
            dependency_groups=target.framework_targets,
        )

    async def run(self, context: BuildContext) -> None:
        publisher = context.require("publisher")

        async def make(package_id: str) -> None:
            manifest = self.manifest_for(context, package_id)
            await asyncio.to_thread(
                publisher.pack,
                context.package_source_dir(package_id),
                manifest,
                context.package_archive_path(package_id),
            )

        await asyncio.gather(*(make(pid) for pid in context.game_metadata.package_ids))


class PushNuGetPackagesTask(BuildTask):
    name = "PushNuGetPackages"
    description = "Push every generated .nupkg"
    dependencies = ("MakePackages",)

    def should_run(self, context: BuildContext) -> bool:
        return not context.package_up_to_date

    async def run(self, context: BuildContext) -> None:
        if not context.nuget_api_key:
            raise ConfigurationError("NuGet API key not provided. Supply one with the '--nuget-api-key [key]' switch.")
        publisher = context.require("publisher")
        for package in sorted(context.nupkgs_dir.glob("*.nupkg")):
            await publisher.push(package, context.nuget_api_key)
