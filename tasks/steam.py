"""
Steam tasks - App info, unknown-build handling and depot downloads.
Steam 任务 —— 获取应用信息、处理未知构建、下载 depot。
"""

from __future__ import annotations

import asyncio
import logging
import shutil

from context.build_context import BuildContext
from errors import ConfigurationError, OutputFormatError, PullRequestInFlightError
from schema import DepotVersion, FrameworkTarget, GameVersionEntry, SteamAppBranch
from tasks.base import BuildTask
from tasks.prepare import write_version_entry

logger = logging.getLogger(__name__)

PUBLIC_BRANCH = "public"
DEFAULT_FRAMEWORK = "netstandard2.0"


def public_branch(context: BuildContext) -> SteamAppBranch:
    branch = context.app_info.branches.get(PUBLIC_BRANCH)
    if branch is None:
        raise OutputFormatError("Current public branch info not found.")
    return branch


class FetchSteamAppInfoTask(BuildTask):
    name = "FetchSteamAppInfo"
    description = "Query SteamCMD for the live app info"
    dependencies = ("Prepare",)

    async def run(self, context: BuildContext) -> None:
        logger.info("[Steam] Getting app info from SteamCMD...")
        steam = context.require("steam")
        context.app_info = await steam.app_info(context.game_metadata.steam.app_id)


class HandleUnknownSteamBuildTask(BuildTask):
    """
    Compare the public branch build with the known versions.
    比较 public 分支的构建号与已知版本：

      - matches the latest known build  -> warn if time_updated disagrees
      - known but not the latest        -> warn
      - unknown (or nothing known yet)  -> write a partial version entry and open a PR
    """

    name = "HandleUnknownSteamBuild"
    description = "Open a pull request for Steam builds without a version entry"
    dependencies = ("FetchSteamAppInfo",)

    async def run(self, context: BuildContext) -> None:
        current = public_branch(context)
        latest = context.game_versions.latest()

        if latest is not None and current.build_id == latest.build_id:
            if current.time_updated != latest.time_updated:
                logger.warning(
                    "[Steam] TimeUpdated for most recent known version is inaccurate - Should be %d",
                    current.time_updated,
                )
            return

        if current.build_id in context.game_versions:
            logger.warning("[Steam] Current version %d is known, but is not latest?", current.build_id)
            return

        await self.open_version_entry_pull_request(context, current)

    def new_version_entry(self, context: BuildContext, branch: SteamAppBranch) -> GameVersionEntry:
        depots = []
        for depot in context.game_metadata.steam.distribution_depots:
            app_depot = context.app_info.depots.get(depot.depot_id)
            manifest = app_depot.manifests.get(PUBLIC_BRANCH) if app_depot else None
            if manifest is None:
                raise OutputFormatError(f"No public manifest for depot {depot.depot_id} in app info")
            depots.append(DepotVersion(depot_id=depot.depot_id, manifest_id=manifest.manifest_id))

        latest = context.game_versions.latest()
        if latest is not None:
            framework_targets = [t.model_copy(deep=True) for t in latest.framework_targets]
        else:
            framework_targets = [FrameworkTarget(tfm=DEFAULT_FRAMEWORK)]

        return GameVersionEntry(
            build_id=branch.build_id,
            time_updated=branch.time_updated,
            game_version="",
            depots=depots,
            framework_targets=framework_targets,
        )

    async def open_version_entry_pull_request(self, context: BuildContext, branch: SteamAppBranch) -> None:
        git = context.require("git")
        branch_name = f"{context.game}-build-{branch.build_id}"

        await git.fetch()
        if await git.remote_branch_exists(branch_name):
            raise PullRequestInFlightError(
                f"Version entry branch '{branch_name}' already exists on 'origin', assuming pull request is already open."
            )

        logger.info("[Steam] Adding new (partial) version entry for build %d ...", branch.build_id)
        entry = self.new_version_entry(context, branch)
        await asyncio.to_thread(write_version_entry, context.versions_dir, entry)

        app_name = context.app_info.name or context.game
        logger.info("[Steam] Opening version entry pull request ...")
        await git.create_branch(branch_name)
        await git.add(context.versions_dir)
        await git.commit(f"add game version entry for {app_name} build {branch.build_id}")
        await git.push_upstream(branch_name)
        await git.create_pull_request(
            title=f"[{context.game}] Version entry - Build {branch.build_id}",
            body=(
                f"Contains partially patched version entry for {app_name} build {branch.build_id}.\n"
                "Game version number must be populated before merging.\n"
                "Game version number can likely be inferred from "
                f"[Patchnotes for {app_name} - SteamDB]"
                f"(https://steamdb.info/app/{context.game_metadata.steam.app_id}/patchnotes/)"
            ),
            head=branch_name,
        )
        logger.warning("[Steam] Version number for new build is unknown. Opened pull request to resolve.")


class DownloadDepotsTask(BuildTask):
    name = "DownloadDepots"
    description = "Download every distribution depot of the requested build"
    dependencies = ("CheckPackageVersionsUpToDate",)

    def should_run(self, context: BuildContext) -> bool:
        return not context.package_up_to_date

    async def run(self, context: BuildContext) -> None:
        steam = context.require("steam")
        target = context.target_version
        app_id = context.game_metadata.steam.app_id
        directories = {}

        # SteamCMD 同一时间只能运行一个实例，因此依次下载
        for depot in context.game_metadata.steam.distribution_depots:
            version = target.depot(depot.depot_id)
            if version is None:
                raise ConfigurationError(f"Build {target.build_id} has no manifest for depot {depot.depot_id}")

            downloaded = await steam.download_depot(app_id, depot.depot_id, version.manifest_id)
            destination = context.depot_directory(depot.depot_id)
            if downloaded.resolve() != destination.resolve():
                await asyncio.to_thread(shutil.copytree, downloaded, destination, dirs_exist_ok=True)
            directories[depot.depot_id] = destination
            logger.info("[Steam] Depot %d ready at %s", depot.depot_id, destination)

        context.depot_directories = directories
