"""
Task catalogue - The pipeline's full task graph.
任务目录 —— 流水线的完整任务图。

    Clean -> Prepare -> FetchSteamAppInfo -> HandleUnknownSteamBuild ─┐
                     -> ListDeployedPackageVersions ──────────────────┴> CheckPackageVersionsUpToDate
                                                                           -> DownloadDepots ─┐
                     -> DownloadNuGetDependencies -> CacheDependencyAssemblyNames ────────────┴> ProcessAssemblies
                                                                           -> MakePackages -> PushNuGetPackages
                     -> DumpGameVersions
    Default <- MakePackages
"""

from __future__ import annotations

from dag.graph import TaskGraph
from tasks.assemblies import ProcessAssembliesTask
from tasks.base import BuildTask
from tasks.nuget import (
    CacheDependencyAssemblyNamesTask,
    CheckPackageVersionsUpToDateTask,
    DownloadNuGetDependenciesTask,
    ListDeployedPackageVersionsTask,
    MakePackagesTask,
    PushNuGetPackagesTask,
)
from tasks.prepare import CleanTask, DumpGameVersionsTask, PrepareTask
from tasks.steam import DownloadDepotsTask, FetchSteamAppInfoTask, HandleUnknownSteamBuildTask

DEFAULT_TERMINALS = ("MakePackages",)


def all_tasks() -> list[BuildTask]:
    return [
        CleanTask(),
        PrepareTask(),
        FetchSteamAppInfoTask(),
        HandleUnknownSteamBuildTask(),
        ListDeployedPackageVersionsTask(),
        CheckPackageVersionsUpToDateTask(),
        DownloadDepotsTask(),
        DownloadNuGetDependenciesTask(),
        CacheDependencyAssemblyNamesTask(),
        ProcessAssembliesTask(),
        MakePackagesTask(),
        PushNuGetPackagesTask(),
        DumpGameVersionsTask(),
    ]


def build_task_graph() -> TaskGraph:
    """Fresh graph for one invocation; node state lives on the graph."""
    return TaskGraph(all_tasks(), terminals=DEFAULT_TERMINALS)
