"""
Graph Executor - Runs a TaskGraph concurrently on the asyncio event loop.
任务图执行引擎 —— 在 asyncio 事件循环上并发执行 TaskGraph。

Scheduling loop:
  1. Resolve every PENDING node in scope whose predecessors are all terminal:
       - any predecessor FAILED  -> node FAILED (propagated, no guard, no body)
       - otherwise               -> dispatch it as an asyncio task
  2. Wait until at least one running node finishes (FIRST_COMPLETED)
  3. Record its TaskResult, then go back to 1
  4. Stop when nothing is running and nothing more can be dispatched

调度循环：
  1. 找出范围内所有前置节点均已到达终态的 PENDING 节点：
       - 任一前置节点 FAILED  -> 该节点直接 FAILED（级联传播，不求值守卫也不执行）
       - 否则                 -> 作为 asyncio 任务派发执行
  2. 等待至少一个运行中的节点结束（FIRST_COMPLETED）
  3. 记录其 TaskResult，回到第 1 步
  4. 没有运行中的节点且无可派发节点时结束

A node is dispatched as soon as it becomes eligible, so sibling nodes run
concurrently with no ordering guarantee among them. A failure never cancels
nodes that are already running; it only short-circuits unexecuted dependents.
节点一旦满足条件即被派发，兄弟节点并发运行且彼此无顺序保证。
失败不会取消已在运行的节点，只会阻断尚未执行的下游节点。

Each node run returns an explicit TaskResult; exceptions raised by a task body
are captured inside the node's own coroutine and never cross task boundaries.
每个节点运行返回显式的 TaskResult；任务执行体抛出的异常在节点协程内部被捕获，不会跨任务边界传播。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

import config
from dag.graph import TaskGraph
from dag.state_machine import NodeStateMachine
from schema import TERMINAL_STATUSES, GraphRunResult, NodeStatus, TaskNode, TaskResult

logger = logging.getLogger(__name__)


def describe_exception(exc: BaseException) -> str:
    message = str(exc)
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"


class GraphExecutor:
    """
    Executes a TaskGraph against a shared context.
    针对共享上下文执行 TaskGraph。

    The executor provides no mutual exclusion beyond predecessor ordering.
    Task bodies that write shared state incrementally must use the work
    ledger or their own lock.
    执行器除前置顺序外不提供任何互斥；增量写共享状态的任务须使用工作账本或自行加锁。
    """

    def __init__(
        self,
        max_parallel: int | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        limit = config.MAX_PARALLEL_NODES if max_parallel is None else max_parallel
        self._max_parallel = limit if limit > 0 else None  # None 表示不限制并发
        self._emit_callback = on_event
        self._sm = NodeStateMachine(listener=self._on_node_transition)

    # ------------------------------------------------------------------
    # Main execution loop
    # 主执行循环
    # ------------------------------------------------------------------

    async def execute(self, graph: TaskGraph, context: Any, target: str | None = None) -> GraphRunResult:
        """
        Execute `target` (default: the graph's root) and its transitive predecessors.
        执行 `target`（默认为图的根节点）及其所有传递前置节点。
        """
        target = target or graph.default_name
        order = graph.execution_order(target)
        results: dict[str, TaskResult] = {}
        running: dict[asyncio.Task[TaskResult], str] = {}
        dispatched: set[str] = set()

        self._emit("graph_started", {"graph": graph, "target": target, "order": order})
        logger.info("[Executor] Running target '%s' (%d nodes)", target, len(order))

        while True:
            self._resolve_eligible(graph, context, order, results, running, dispatched)

            if not running:
                break

            done, _ = await asyncio.wait(running.keys(), return_when=asyncio.FIRST_COMPLETED)
            for finished in done:
                node_id = running.pop(finished)
                results[node_id] = finished.result()  # _run_node 从不抛出异常

        stuck = [nid for nid in order if graph.nodes[nid].status not in TERMINAL_STATUSES]
        if stuck:
            # 在合法无环图中不应出现；出现则说明节点状态在外部被修改
            logger.error("[Executor] Nodes never became eligible: %s", ", ".join(stuck))

        run_result = GraphRunResult(target=target, results=results)
        logger.info("[Executor] Target '%s' finished. %s", target, graph.summary())
        self._emit("graph_finished", {"graph": graph, "result": run_result})
        return run_result

    def _resolve_eligible(
        self,
        graph: TaskGraph,
        context: Any,
        order: list[str],
        results: dict[str, TaskResult],
        running: dict[asyncio.Task[TaskResult], str],
        dispatched: set[str],
    ) -> None:
        """
        Propagate failures and dispatch every node whose predecessors are terminal.
        Repeats until a pass changes nothing, because propagated failures can
        make further nodes eligible within the same pass.

        传播失败并派发所有前置节点已终态的节点。
        由于级联失败可能让更多节点在同一轮内满足条件，因此重复扫描直到无变化。
        """
        progressed = True
        while progressed:
            progressed = False
            for node_id in order:
                node = graph.nodes[node_id]
                if node.status != NodeStatus.PENDING or node_id in dispatched:
                    continue

                deps = graph.get_dependency_ids(node_id)
                if not all(graph.nodes[d].status in TERMINAL_STATUSES for d in deps):
                    continue

                failed = [d for d in deps if graph.nodes[d].status == NodeStatus.FAILED]
                if failed:
                    results[node_id] = self._propagate_failure(node, failed[0], results.get(failed[0]))
                    progressed = True
                    continue

                if self._max_parallel is not None and len(running) >= self._max_parallel:
                    return

                dispatched.add(node_id)
                task = asyncio.create_task(self._run_node(graph, node, context), name=f"node:{node_id}")
                running[task] = node_id

    # ------------------------------------------------------------------
    # Node execution
    # 节点执行
    # ------------------------------------------------------------------

    async def _run_node(self, graph: TaskGraph, node: TaskNode, context: Any) -> TaskResult:
        """
        Evaluate one node: guard, then body. Always returns a TaskResult.
        求值单个节点：先守卫、后执行体。始终返回 TaskResult。
        """
        task = graph.tasks.get(node.id)  # 根节点没有执行体
        started = time.monotonic()
        try:
            if task is not None and not task.should_run(context):
                result = TaskResult(node_id=node.id, status=NodeStatus.SKIPPED)
                self._sm.transition(node, NodeStatus.SKIPPED, result)
                logger.info("[Executor] %s skipped (guard returned False)", node.id)
                return result

            self._sm.transition(node, NodeStatus.RUNNING)
            logger.info("[Executor] %s running", node.id)
            if task is not None:
                await task.run(context)
        except Exception as exc:
            result = TaskResult(
                node_id=node.id,
                status=NodeStatus.FAILED,
                error=describe_exception(exc),
                exception=exc,
                duration=time.monotonic() - started,
            )
            logger.error("[Executor] %s failed: %s", node.id, result.error, exc_info=logger.isEnabledFor(logging.DEBUG))
            self._sm.transition(node, NodeStatus.FAILED, result)
            return result

        result = TaskResult(node_id=node.id, status=NodeStatus.SUCCEEDED, duration=time.monotonic() - started)
        logger.info("[Executor] %s succeeded in %.2fs", node.id, result.duration)
        self._sm.transition(node, NodeStatus.SUCCEEDED, result)
        return result

    def _propagate_failure(self, node: TaskNode, failed_dep: str, dep_result: TaskResult | None) -> TaskResult:
        """
        Mark `node` FAILED because `failed_dep` failed. Guard and body are not evaluated.
        因 `failed_dep` 失败而将 `node` 标记为 FAILED，不求值守卫也不执行。
        """
        origin = failed_dep
        if dep_result is not None and dep_result.propagated_from:
            origin = dep_result.propagated_from
        result = TaskResult(
            node_id=node.id,
            status=NodeStatus.FAILED,
            error=f"Predecessor '{failed_dep}' failed",
            propagated_from=origin,
        )
        logger.warning("[Executor] %s not run: %s", node.id, result.error)
        self._sm.transition(node, NodeStatus.FAILED, result)
        return result

    # ------------------------------------------------------------------
    # Event helpers
    # 事件辅助方法
    # ------------------------------------------------------------------

    def _emit(self, event: str, data: Any) -> None:
        if self._emit_callback is None:
            return
        try:
            self._emit_callback(event, data)
        except Exception:
            # UI errors should never crash the pipeline / UI 异常不能影响主流程
            logger.debug("[Executor] on_event callback failed for %s", event, exc_info=True)

    def _on_node_transition(
        self,
        node: TaskNode,
        old: NodeStatus,
        new: NodeStatus,
        result: TaskResult | None,
    ) -> None:
        """
        State machine listener: every transition becomes a node_transition
        event plus the node_<status> event for the new state.
        状态机监听者：每次转移产生一个 node_transition 事件，以及对应新状态的 node_<状态> 事件。
        """
        self._emit("node_transition", {"node_id": node.id, "from": old.value, "to": new.value})
        self._emit(f"node_{new.value}", {"node": node, "result": result})
