"""
Pydantic data models for the GameLib Dehumidifier.
Defines the core data structures shared by the task graph, the build
context, the service adapters and the tasks.
GameLib Dehumidifier 的 Pydantic 数据模型。
定义了贯穿任务图、构建上下文、外部服务适配器与各任务的核心数据结构。

Two groups of models live here:
  - Graph models: NodeStatus, TaskNode, TaskResult, GraphRunResult
  - External data shapes: game metadata / version entries (JSON on disk),
    Steam app info (SteamCMD KeyValues output), NuGet package versions

这里包含两组模型：
  - 任务图模型：NodeStatus、TaskNode、TaskResult、GraphRunResult
  - 外部数据结构：游戏元数据/版本条目（磁盘 JSON）、Steam 应用信息（SteamCMD 输出）、NuGet 包版本
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ======================================================================
# Task graph models
# 任务图模型
# ======================================================================

class NodeStatus(str, Enum):
    """
    Node lifecycle states, managed by NodeStateMachine.
    节点生命周期状态，由 NodeStateMachine 强制管理合法转移。

    Transition graph:
    转移图：
        PENDING -> RUNNING -> SUCCEEDED
                           -> FAILED
        PENDING -> SKIPPED            (guard returned False / 守卫条件不满足)
        PENDING -> FAILED             (a predecessor failed / 上游节点失败，级联传播)
    """
    PENDING = "pending"       # 等待前置节点到达终态
    RUNNING = "running"       # 正在执行
    SUCCEEDED = "succeeded"   # 成功完成（终态）
    FAILED = "failed"         # 失败（终态，执行失败或上游失败）
    SKIPPED = "skipped"       # 被跳过（终态，守卫条件返回 False）


TERMINAL_STATUSES = frozenset({NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED})


class TaskNode(BaseModel):
    """
    A single node in the task graph. Holds the graph-facing state only;
    the guard and run body live on the BuildTask registered under the same id.

    任务图中的单个节点，只保存图相关状态；
    守卫与执行体位于同名注册的 BuildTask 上。
    """
    id: str = Field(description="Unique task name, e.g. 'ProcessAssemblies'")  # 节点唯一名称
    description: str = ""                                                      # 节点描述
    dependencies: list[str] = Field(default_factory=list, description="Predecessor names, in declaration order")
    status: NodeStatus = NodeStatus.PENDING                                    # 当前状态，由状态机管理
    error: str | None = None                                                   # 失败原因


class TaskResult(BaseModel):
    """
    Explicit outcome of evaluating one node. The executor inspects this value
    instead of letting exceptions unwind across concurrent task boundaries.

    单个节点的显式执行结果。执行器检查该值，而不是让异常跨并发任务边界传播。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    node_id: str
    status: NodeStatus
    error: str | None = None                                     # 人类可读的失败原因
    exception: BaseException | None = Field(default=None, exclude=True)  # 原始异常对象（不参与序列化）
    propagated_from: str | None = None                           # 级联失败时，最初失败的上游节点
    duration: float = 0.0                                        # 执行耗时（秒）

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED


class GraphRunResult(BaseModel):
    """
    Aggregate outcome of one graph execution.
    一次任务图执行的汇总结果。
    """
    target: str
    results: dict[str, TaskResult] = Field(default_factory=dict)  # node_id -> TaskResult，仅包含被执行范围内的节点

    @property
    def failures(self) -> list[TaskResult]:
        return [r for r in self.results.values() if r.status == NodeStatus.FAILED]

    @property
    def root_failures(self) -> list[TaskResult]:
        """Failures that originated in a node body (not propagated)."""
        return [r for r in self.failures if r.propagated_from is None]

    @property
    def succeeded(self) -> bool:
        return not self.failures


# ======================================================================
# Game metadata (metadata.json / versions/*.json)
# 游戏元数据（metadata.json 与 versions/*.json）
# ======================================================================

class _CamelModel(BaseModel):
    """JSON on disk uses camelCase keys; Python code uses snake_case."""
    model_config = ConfigDict(populate_by_name=True)


class NuGetDependency(_CamelModel):
    name: str
    version: str


class FrameworkTarget(_CamelModel):
    """
    A target framework moniker plus the NuGet packages that already supply
    some of the game's assemblies for that framework.
    目标框架（TFM）及其依赖包；依赖包已提供的程序集不再重复打包。
    """
    tfm: str = Field(description="Target framework moniker, e.g. 'netstandard2.0'")
    dependencies: list[NuGetDependency] = Field(default_factory=list)


class DistributionDepot(_CamelModel):
    depot_id: int = Field(alias="depotId")
    distribution_name: str = Field(alias="distributionName")
    is_default: bool = Field(default=False, alias="isDefault")

    @property
    def package_suffix(self) -> str:
        if self.is_default:
            return ""
        return f".{self.distribution_name}"


class SteamGameMetadata(_CamelModel):
    app_id: int = Field(alias="appId")
    distribution_depots: list[DistributionDepot] = Field(alias="gameDistDepots")


class ProcessSettings(_CamelModel):
    exclude_assemblies: list[str] = Field(default_factory=list, alias="excludeAssemblies")
    assemblies_to_publicise: list[str] = Field(default_factory=list, alias="assembliesToPublicise")
    is_il2cpp: bool = Field(default=False, alias="isIL2Cpp")


class NuGetGameMetadata(_CamelModel):
    name: str
    description: str = ""
    authors: list[str] = Field(default_factory=list)
    framework_targets: list[FrameworkTarget] = Field(default_factory=list, alias="frameworkTargets")


class GameMetadata(_CamelModel):
    """
    Contents of Games/<game>/metadata.json.
    Games/<游戏>/metadata.json 的内容。
    """
    steam: SteamGameMetadata
    process_settings: ProcessSettings = Field(default_factory=ProcessSettings, alias="processSettings")
    nuget: NuGetGameMetadata

    def package_id(self, depot: DistributionDepot) -> str:
        return f"{self.nuget.name}{depot.package_suffix}"

    @property
    def package_ids(self) -> list[str]:
        return [self.package_id(d) for d in self.steam.distribution_depots]


class DepotVersion(_CamelModel):
    depot_id: int = Field(alias="depotId")
    manifest_id: int = Field(alias="manifestId")  # Python int 为任意精度，可直接容纳 64 位无符号 manifest id


class GameVersionEntry(_CamelModel):
    """
    One known build of the game. Ordered by time_updated, identified by build_id.
    游戏的一个已知构建版本。按 time_updated 排序，以 build_id 标识。
    """
    build_id: int = Field(alias="buildId")
    time_updated: int = Field(alias="timeUpdated")
    game_version: str = Field(default="", alias="gameVersion")
    depots: list[DepotVersion] = Field(default_factory=list)
    framework_targets: list[FrameworkTarget] = Field(default_factory=list, alias="frameworkTargets")

    def depot(self, depot_id: int) -> DepotVersion | None:
        for d in self.depots:
            if d.depot_id == depot_id:
                return d
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GameVersionEntry):
            return NotImplemented
        return self.build_id == other.build_id

    def __hash__(self) -> int:
        return hash(self.build_id)

    def __lt__(self, other: GameVersionEntry) -> bool:
        return self.time_updated < other.time_updated


class GameVersionMap(dict[int, GameVersionEntry]):
    """build_id -> GameVersionEntry"""

    def latest(self) -> GameVersionEntry | None:
        if not self:
            return None
        return max(self.values(), key=lambda v: v.time_updated)


# ======================================================================
# Steam app info (SteamCMD +app_info_print)
# Steam 应用信息（SteamCMD +app_info_print 输出）
# ======================================================================

class SteamAppManifest(BaseModel):
    branch_name: str
    manifest_id: int


class SteamAppDepot(BaseModel):
    depot_id: int
    manifests: dict[str, SteamAppManifest] = Field(default_factory=dict)  # branch name -> manifest


class SteamAppBranch(BaseModel):
    branch_name: str
    build_id: int
    time_updated: int = 0


class SteamAppInfo(BaseModel):
    """
    Typed view of the KeyValues tree SteamCMD prints for an app.
    SteamCMD 输出的 KeyValues 树的强类型视图。

    The decode step validates shape up front: a missing branch build id or a
    non-numeric manifest gid fails here, not later in a task.
    解码时即校验结构：缺失 buildid 或非数字 gid 会在此处报错，而不是在后续任务中出错。
    """
    app_id: int
    name: str = ""
    depots: dict[int, SteamAppDepot] = Field(default_factory=dict)
    branches: dict[str, SteamAppBranch] = Field(default_factory=dict)

    @classmethod
    def from_key_values(cls, app_key: str, tree: dict[str, Any]) -> SteamAppInfo:
        common = tree.get("common", {}) or {}
        depots: dict[int, SteamAppDepot] = {}
        branches: dict[str, SteamAppBranch] = {}

        for key, value in (tree.get("depots", {}) or {}).items():
            if key == "branches":
                for branch_name, branch in value.items():
                    branches[branch_name] = SteamAppBranch(
                        branch_name=branch_name,
                        build_id=int(branch["buildid"]),
                        time_updated=int(branch.get("timeupdated", 0)),
                    )
                continue
            if not key.isdigit() or not isinstance(value, dict):
                continue  # depots 下还有 baselanguages 等非 depot 键
            manifests: dict[str, SteamAppManifest] = {}
            for branch_name, m in (value.get("manifests", {}) or {}).items():
                # 旧版输出中 manifest 直接是 gid 字符串，新版是包含 gid/size 的子块
                gid = m["gid"] if isinstance(m, dict) else m
                manifests[branch_name] = SteamAppManifest(branch_name=branch_name, manifest_id=int(gid))
            depots[int(key)] = SteamAppDepot(depot_id=int(key), manifests=manifests)

        return cls(app_id=int(app_key), name=common.get("name", ""), depots=depots, branches=branches)


# ======================================================================
# NuGet
# NuGet 包版本
# ======================================================================

class PackageVersionInfo(BaseModel):
    """A published version of a package, as reported by the registry."""
    package_id: str
    version: str
    published: datetime | None = None
