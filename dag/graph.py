"""
TaskGraph - Directed Acyclic Graph of build tasks.
TaskGraph —— 构建任务的有向无环图。

The TaskGraph holds:
  - nodes: dict of TaskNode (graph-facing state: predecessors, status, error)
  - tasks: dict of BuildTask (guard + run body) keyed by the same names
  - an implicit root node ("Default") whose predecessors are the terminal tasks

TaskGraph 包含：
  - nodes：TaskNode 字典（图相关状态：前置节点、状态、错误）
  - tasks：BuildTask 字典（守卫 + 执行体），与节点同名
  - 隐式根节点（"Default"），其前置节点为指定的终端任务

Key operations:
  - topological_sort(): Kahn's algorithm for execution ordering
  - ancestors():        the sub-graph needed to reach a target node
  - get_downstream():   every node reachable from a node
  - is_complete():      check if every node in scope is terminal

核心操作：
  - topological_sort(): Kahn 算法确定合法执行顺序
  - ancestors():        到达目标节点所需的子图
  - get_downstream():   从某节点可达的全部下游节点
  - is_complete():      检查范围内所有节点是否已到达终态

Construction validates the graph and raises GraphValidationError on duplicate
names, unknown predecessors, unknown terminals or cycles.
构造时校验图结构：重名、未知前置节点、未知终端节点或存在环时抛出 GraphValidationError。
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Iterable

from schema import TERMINAL_STATUSES, NodeStatus, TaskNode
from tasks.base import BuildTask

logger = logging.getLogger(__name__)

DEFAULT_NODE = "Default"


class GraphValidationError(Exception):
    """
    Raised when the declared graph is malformed.
    当声明的任务图结构非法时抛出。
    """
    pass


class TaskGraph:
    """
    Dependency graph of build tasks with per-node lifecycle state.
    带节点生命周期状态的构建任务依赖图。
    """

    def __init__(
        self,
        tasks: Iterable[BuildTask],
        terminals: Iterable[str] | None = None,
        default_name: str = DEFAULT_NODE,
    ):
        self.tasks: dict[str, BuildTask] = {}
        self.nodes: dict[str, TaskNode] = {}
        self.default_name = default_name

        for task in tasks:
            if not task.name:
                raise GraphValidationError(f"Task {task!r} has no name")
            if task.name in self.tasks or task.name == default_name:
                raise GraphValidationError(f"Duplicate task name '{task.name}'")
            self.tasks[task.name] = task
            self.nodes[task.name] = TaskNode(
                id=task.name,
                description=task.description,
                dependencies=list(task.dependencies),
            )

        # 隐式根节点：没有执行体，只依赖终端任务
        terminal_names = list(terminals) if terminals is not None else []
        self.nodes[default_name] = TaskNode(
            id=default_name,
            description="Overall completion",
            dependencies=terminal_names,
        )

        # 反向邻接表：node -> 直接依赖它的节点
        self._dependents: dict[str, list[str]] = {nid: [] for nid in self.nodes}

        self._validate_graph()

        for node in self.nodes.values():
            for dep in node.dependencies:
                self._dependents[dep].append(node.id)

        self._order = self.topological_sort()

    # ------------------------------------------------------------------
    # Node queries
    # 节点查询方法
    # ------------------------------------------------------------------

    def get_dependency_ids(self, node_id: str) -> list[str]:
        """
        Return IDs of nodes that `node_id` depends on, in declaration order.
        返回 `node_id` 所依赖的所有节点 ID（按声明顺序）。
        """
        return list(self.nodes[node_id].dependencies)

    def get_dependent_ids(self, node_id: str) -> list[str]:
        """Direct dependents of `node_id`. 直接依赖 `node_id` 的节点。"""
        return list(self._dependents.get(node_id, []))

    def get_downstream(self, node_id: str) -> list[str]:
        """
        Return all node IDs downstream of `node_id` via BFS.
        通过 BFS 返回 `node_id` 的所有下游节点 ID。
        """
        visited: set[str] = set()
        queue: deque[str] = deque(self._dependents.get(node_id, []))
        while queue:
            nid = queue.popleft()
            if nid in visited:
                continue
            visited.add(nid)
            queue.extend(self._dependents.get(nid, []))
        return [nid for nid in self._order if nid in visited]

    def ancestors(self, node_id: str) -> set[str]:
        """
        Return `node_id` plus every node it transitively depends on.
        Running a target executes exactly this set.

        返回 `node_id` 及其所有传递依赖节点。执行某个目标时，正好执行该集合。
        """
        if node_id not in self.nodes:
            raise GraphValidationError(f"Unknown target '{node_id}'")
        visited: set[str] = set()
        stack = [node_id]
        while stack:
            nid = stack.pop()
            if nid in visited:
                continue
            visited.add(nid)
            stack.extend(self.nodes[nid].dependencies)
        return visited

    def execution_order(self, target: str | None = None) -> list[str]:
        """Topological order restricted to the sub-graph of `target`."""
        scope = self.ancestors(target or self.default_name)
        return [nid for nid in self._order if nid in scope]

    # ------------------------------------------------------------------
    # Graph algorithms
    # 图算法
    # ------------------------------------------------------------------

    def topological_sort(self) -> list[str]:
        """
        Kahn's algorithm — returns node IDs in a valid execution order.
        Ties are broken by registration order so the result is stable.

        Kahn 算法 —— 返回节点 ID 的合法拓扑执行顺序。
        同层节点按注册顺序排列，结果稳定。
        """
        in_degree: dict[str, int] = {nid: len(n.dependencies) for nid, n in self.nodes.items()}
        dependents: dict[str, list[str]] = {nid: [] for nid in self.nodes}
        for node in self.nodes.values():
            for dep in node.dependencies:
                dependents[dep].append(node.id)

        queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
        result: list[str] = []

        while queue:
            nid = queue.popleft()
            result.append(nid)
            for child in dependents[nid]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    queue.append(child)

        if len(result) != len(self.nodes):
            cyclic = sorted(nid for nid, deg in in_degree.items() if deg > 0)
            raise GraphValidationError(f"Cycle detected among tasks: {', '.join(cyclic)}")
        return result

    def is_complete(self, scope: Iterable[str] | None = None) -> bool:
        """
        True if every node in scope has reached a terminal state.
        范围内所有节点都到达终态时返回 True。
        """
        ids = scope if scope is not None else self.nodes.keys()
        return all(self.nodes[nid].status in TERMINAL_STATUSES for nid in ids)

    def has_failed_nodes(self) -> bool:
        return any(n.status == NodeStatus.FAILED for n in self.nodes.values())

    # ------------------------------------------------------------------
    # Validation
    # 校验
    # ------------------------------------------------------------------

    def _validate_graph(self) -> None:
        """
        Reject unknown predecessor names and self references.
        Cycles are detected by topological_sort().

        拒绝未知前置节点与自引用；环由 topological_sort() 检测。
        """
        for node in self.nodes.values():
            seen: set[str] = set()
            for dep in node.dependencies:
                if dep not in self.nodes:
                    if node.id == self.default_name:
                        raise GraphValidationError(f"Unknown terminal task '{dep}'")
                    raise GraphValidationError(f"Task '{node.id}' depends on unknown task '{dep}'")
                if dep == node.id:
                    raise GraphValidationError(f"Task '{node.id}' depends on itself")
                if dep in seen:
                    logger.warning("[Graph] Task '%s' lists predecessor '%s' twice", node.id, dep)
                seen.add(dep)
            # 去重但保留声明顺序
            node.dependencies = list(dict.fromkeys(node.dependencies))

    # ------------------------------------------------------------------
    # Display helpers
    # 展示辅助方法
    # ------------------------------------------------------------------

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Graph[5 nodes: 2 succeeded, 3 pending]
        生成单行状态摘要，用于日志输出。
        """
        status_counts: dict[str, int] = {}
        for n in self.nodes.values():
            status_counts[n.status.value] = status_counts.get(n.status.value, 0) + 1
        parts = [f"{v} {k}" for k, v in status_counts.items()]
        return f"Graph[{len(self.nodes)} nodes: {', '.join(parts)}]"

    def to_dict(self) -> dict[str, Any]:
        """Serialize node states (for logging / debugging)."""
        return {nid: n.model_dump() for nid, n in self.nodes.items()}
