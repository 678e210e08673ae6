"""
BuildTask - Abstract interface for all task nodes in the build graph.
BuildTask —— 构建任务图中所有任务节点的抽象接口。

Each task exposes:
  - name / description: the node's identity in the graph
  - dependencies: names of predecessor tasks
  - should_run(): optional guard, evaluated after every predecessor is terminal
  - run(): the coroutine that performs the work against the shared BuildContext

每个任务暴露：
  - name / description：节点在图中的标识
  - dependencies：前置任务名称
  - should_run()：可选守卫条件，在所有前置节点到达终态后求值
  - run()：对共享 BuildContext 执行实际工作的协程
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from context.build_context import BuildContext


class BuildTask(ABC):
    """
    Abstract base class for all build tasks.
    所有构建任务的抽象基类。

    Subclasses declare their graph position with class attributes:

        class PrepareTask(BuildTask):
            name = "Prepare"
            dependencies = ("Clean",)
    """

    name: str = ""
    description: str = ""
    dependencies: tuple[str, ...] = ()

    def should_run(self, context: BuildContext) -> bool:
        """
        Guard predicate. Returning False marks the node SKIPPED without
        calling run(); dependents still treat it as complete.
        守卫条件。返回 False 时节点被标记为 SKIPPED，run() 不会被调用；下游仍视其为已完成。
        """
        return True

    @abstractmethod
    async def run(self, context: BuildContext) -> None:
        """
        Perform the task. Raising marks the node FAILED.
        执行任务。抛出异常即表示节点失败。
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionTask(BuildTask):
    """
    A task assembled from plain callables. The body may be a regular function
    or a coroutine function; both receive the context.
    由普通函数组装的任务，执行体可以是普通函数或协程函数。
    """

    def __init__(
        self,
        name: str,
        body: Callable[[Any], Any] | None = None,
        dependencies: tuple[str, ...] | list[str] = (),
        guard: Callable[[Any], bool] | None = None,
        description: str = "",
    ):
        self.name = name
        self.description = description
        self.dependencies = tuple(dependencies)
        self._body = body
        self._guard = guard

    def should_run(self, context: Any) -> bool:
        if self._guard is None:
            return True
        return bool(self._guard(context))

    async def run(self, context: Any) -> None:
        if self._body is None:
            return
        outcome = self._body(context)
        if inspect.isawaitable(outcome):
            await outcome
