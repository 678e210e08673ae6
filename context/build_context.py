"""
BuildContext - The explicit shared state passed to every task node.
BuildContext —— 传递给每个任务节点的显式共享状态。

Two kinds of mutable state live here:
  - Write-once fields (WriteOnce descriptor). Exactly one producing task sets
    each of them; consumers read them after the producer is terminal, which
    the graph's predecessor ordering guarantees. Reading early raises
    ContextFieldUnsetError, setting twice raises ContextFieldAlreadySetError,
    and mappings are exposed read-only.
  - Incrementally populated state (assembly_ledger). Written by many concurrent
    branches of one task, so it goes through the WorkLedger.

这里有两类可变状态：
  - 一次写入字段（WriteOnce 描述符）：每个字段只由一个生产任务写入；
    消费者在生产者到达终态后读取（由任务图的前置顺序保证，无需额外加锁）。
    提前读取抛出 ContextFieldUnsetError，重复写入抛出 ContextFieldAlreadySetError，映射类型以只读视图暴露。
  - 增量填充的状态（assembly_ledger）：由同一任务的多个并发分支写入，因此通过 WorkLedger 同步。

Service handles (steam, nuget, publisher, git, publicizer, versioner) are
constructed once per process and passed in explicitly.
服务句柄每个进程构造一次，显式传入。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import config
from context.ledger import WorkLedger
from errors import ConfigurationError
from schema import GameMetadata, GameVersionEntry, GameVersionMap, SteamAppInfo

if TYPE_CHECKING:
    from processing.assemblies import ProcessingReport
    from services.git import GitClient
    from services.nuget import NuGetClient, PackagePublisher
    from services.publicizer import AssemblyPublicizer
    from services.steamcmd import SteamCmdClient
    from services.versioner import Versioner

logger = logging.getLogger(__name__)


class ContextFieldUnsetError(RuntimeError):
    """A write-once field was read before its producing task set it."""


class ContextFieldAlreadySetError(RuntimeError):
    """A write-once field was assigned a second time."""


_UNSET = object()


class WriteOnce:
    """
    Descriptor for a context field populated exactly once.
    只允许写入一次的上下文字段描述符。
    """

    def __init__(self, doc: str = ""):
        self.__doc__ = doc

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.attr = f"_wo_{name}"

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        value = getattr(obj, self.attr, _UNSET)
        if value is _UNSET:
            raise ContextFieldUnsetError(f"Context field '{self.name}' has not been populated yet")
        return value

    def __set__(self, obj: Any, value: Any) -> None:
        if getattr(obj, self.attr, _UNSET) is not _UNSET:
            raise ContextFieldAlreadySetError(f"Context field '{self.name}' is already populated")
        if isinstance(value, Mapping) and not isinstance(value, GameVersionMap):
            value = MappingProxyType(dict(value))
        setattr(obj, self.attr, value)

    def is_set(self, obj: Any) -> bool:
        return getattr(obj, self.attr, _UNSET) is not _UNSET


class BuildContext:
    """
    Process-wide state for one pipeline invocation.
    一次流水线调用的全局状态。
    """

    # --- Produced by Prepare ---
    game_metadata: GameMetadata = WriteOnce("Decoded Games/<game>/metadata.json")
    game_versions: GameVersionMap = WriteOnce("Known game builds, keyed by build id")
    # --- Produced by FetchSteamAppInfo ---
    app_info: SteamAppInfo = WriteOnce("Live app info reported by SteamCMD")
    # --- Produced by ListDeployedPackageVersions ---
    deployed_packages: Mapping[str, list] = WriteOnce("package id -> published PackageVersionInfo list")
    # --- Produced by CheckPackageVersionsUpToDate ---
    outdated_build_ids: list[int] = WriteOnce("Build ids whose packages need (re)publishing")
    package_up_to_date: bool = WriteOnce("Whether the requested build is already published")
    # --- Produced by DownloadDepots ---
    depot_directories: Mapping[int, Path] = WriteOnce("depot id -> local depot directory")
    # --- Produced by DownloadNuGetDependencies ---
    dependency_packages: Mapping[tuple[str, str], Path] = WriteOnce("(package id, version) -> downloaded .nupkg")
    # --- Produced by CacheDependencyAssemblyNames ---
    framework_dependency_assemblies: Mapping[str, frozenset[str]] = WriteOnce(
        "tfm -> assembly file names supplied by that target's dependencies"
    )
    # --- Produced by ProcessAssemblies ---
    processing_report: ProcessingReport = WriteOnce("Summary of assembly processing")

    def __init__(
        self,
        game: str | None,
        build_id: int | None = None,
        steam_username: str = "",
        nuget_api_key: str = "",
        root_dir: str | Path | None = None,
        steam: SteamCmdClient | None = None,
        nuget: NuGetClient | None = None,
        publisher: PackagePublisher | None = None,
        git: GitClient | None = None,
        publicizer: AssemblyPublicizer | None = None,
        versioner: Versioner | None = None,
    ):
        self.game = (game or "").strip()
        self.build_id = build_id
        self.steam_username = steam_username
        self.nuget_api_key = nuget_api_key
        self.root_dir = Path(root_dir or config.ROOT_DIR).resolve()

        # 服务句柄：每个进程构造一次，由 main.build_services() 传入
        self.steam = steam
        self.nuget = nuget
        self.publisher = publisher
        self.git = git
        self.publicizer = publicizer
        self.versioner = versioner

        # 增量写入的共享状态必须经过账本同步
        self.assembly_ledger = WorkLedger("assemblies")

    # ------------------------------------------------------------------
    # Paths
    # 路径
    # ------------------------------------------------------------------

    @property
    def games_dir(self) -> Path:
        return self.root_dir / config.GAMES_DIR_NAME

    @property
    def game_dir(self) -> Path:
        if not self.game:
            raise ConfigurationError("No game folder name provided. Supply one with the '--game [folder name]' switch.")
        return self.games_dir / self.game

    @property
    def metadata_path(self) -> Path:
        return self.game_dir / "metadata.json"

    @property
    def versions_dir(self) -> Path:
        return self.game_dir / "versions"

    @property
    def nupkgs_dir(self) -> Path:
        return self.game_dir / "nupkgs"

    def depot_directory(self, depot_id: int) -> Path:
        return self.game_dir / "steam" / f"depot_{depot_id}"

    def package_source_dir(self, package_id: str) -> Path:
        return self.nupkgs_dir / package_id

    def package_ref_dir(self, package_id: str, tfm: str) -> Path:
        return self.package_source_dir(package_id) / "ref" / tfm

    def package_archive_path(self, package_id: str) -> Path:
        return self.nupkgs_dir / f"{package_id}.nupkg"

    # ------------------------------------------------------------------
    # Derived data
    # 派生数据
    # ------------------------------------------------------------------

    @property
    def target_version(self) -> GameVersionEntry:
        """
        The version entry selected by --build.
        由 --build 选择的版本条目。
        """
        if self.build_id is None:
            raise ConfigurationError("Build ID not provided. Supply one with the '--build [build id]' switch.")
        entry = self.game_versions.get(self.build_id)
        if entry is None:
            raise ConfigurationError(f"Build {self.build_id} is not a known version of '{self.game}'.")
        return entry

    def is_populated(self, field: str) -> bool:
        descriptor = type(self).__dict__.get(field)
        if not isinstance(descriptor, WriteOnce):
            raise AttributeError(f"'{field}' is not a write-once context field")
        return descriptor.is_set(self)

    def require(self, service: str) -> Any:
        """Return a service handle, failing clearly when it was not configured."""
        handle = getattr(self, service, None)
        if handle is None:
            raise ConfigurationError(f"Service '{service}' is not configured for this run")
        return handle
