"""
任务图与执行器测试 — 测试分别体现：
  1. 图结构校验（环、未知前置、重名、未知终端节点）
  2. 守卫跳过：菱形图中 C 被跳过，D 仍然执行
  3. 失败传播：A 失败 -> B、C 级联失败；无关兄弟 X 正常完成
  4. 调度不变量：节点开始运行前，所有前置节点都已到达终态
  5. 目标子图：只执行目标节点的传递前置节点
  6. 状态机：非法转移被拒绝

运行方式:
    python -m pytest tests/test_task_graph.py -v

所有测试使用真实的 TaskGraph / GraphExecutor / NodeStateMachine，任务体为普通函数。
"""

from __future__ import annotations

import asyncio

import pytest

from dag.executor import GraphExecutor
from dag.graph import DEFAULT_NODE, GraphValidationError, TaskGraph
from dag.state_machine import VALID_TRANSITIONS, InvalidTransitionError, NodeStateMachine
from schema import TERMINAL_STATUSES, NodeStatus, TaskNode, TaskResult
from tasks.base import FunctionTask


def _recorder(log: list[str], name: str, delay: float = 0.0):
    async def body(context):
        if delay:
            await asyncio.sleep(delay)
        log.append(name)
    return body


def _failing(message: str):
    def body(context):
        raise RuntimeError(message)
    return body


def _diamond(log: list[str], guard_c=None) -> TaskGraph:
    """
        A
       / \\
      B   C
       \\ /
        D
    """
    return TaskGraph(
        [
            FunctionTask("A", _recorder(log, "A")),
            FunctionTask("B", _recorder(log, "B"), dependencies=["A"]),
            FunctionTask("C", _recorder(log, "C"), dependencies=["A"], guard=guard_c),
            FunctionTask("D", _recorder(log, "D"), dependencies=["B", "C"]),
        ],
        terminals=["D"],
    )


# ======================================================================
# Test 1: 图结构校验
# ======================================================================


class TestGraphValidation:
    """构造时即拒绝非法图结构。"""

    def test_cycle_is_rejected(self):
        with pytest.raises(GraphValidationError, match="Cycle"):
            TaskGraph([
                FunctionTask("A", dependencies=["C"]),
                FunctionTask("B", dependencies=["A"]),
                FunctionTask("C", dependencies=["B"]),
            ])

    def test_unknown_predecessor_is_rejected(self):
        with pytest.raises(GraphValidationError, match="unknown task 'Missing'"):
            TaskGraph([FunctionTask("A", dependencies=["Missing"])])

    def test_duplicate_name_is_rejected(self):
        with pytest.raises(GraphValidationError, match="Duplicate"):
            TaskGraph([FunctionTask("A"), FunctionTask("A")])

    def test_unknown_terminal_is_rejected(self):
        with pytest.raises(GraphValidationError, match="terminal"):
            TaskGraph([FunctionTask("A")], terminals=["Nope"])

    def test_self_dependency_is_rejected(self):
        with pytest.raises(GraphValidationError):
            TaskGraph([FunctionTask("A", dependencies=["A"])])

    def test_default_node_requires_terminals(self):
        graph = _diamond([])
        assert graph.get_dependency_ids(DEFAULT_NODE) == ["D"]
        order = graph.topological_sort()
        assert order[-1] == DEFAULT_NODE, "根节点应排在最后"
        assert order.index("A") < order.index("B") < order.index("D")

    def test_downstream_and_ancestors(self):
        graph = _diamond([])
        assert set(graph.get_downstream("B")) == {"D", DEFAULT_NODE}
        assert graph.ancestors("D") == {"A", "B", "C", "D"}
        with pytest.raises(GraphValidationError):
            graph.ancestors("Unknown")


# ======================================================================
# Test 2: 守卫跳过
# ======================================================================


class TestGuardedSkip:

    @pytest.mark.asyncio
    async def test_diamond_with_false_guard_on_c(self):
        """C 的守卫为 False：A、B、D 成功，C 跳过且其执行体未被调用。"""
        log: list[str] = []
        graph = _diamond(log, guard_c=lambda ctx: False)

        result = await GraphExecutor().execute(graph, context=None)

        statuses = {nid: r.status for nid, r in result.results.items()}
        assert statuses["A"] == NodeStatus.SUCCEEDED
        assert statuses["B"] == NodeStatus.SUCCEEDED
        assert statuses["C"] == NodeStatus.SKIPPED
        assert statuses["D"] == NodeStatus.SUCCEEDED, "跳过的前置节点对下游而言视为已完成"
        assert statuses[DEFAULT_NODE] == NodeStatus.SUCCEEDED
        assert "C" not in log
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_guard_sees_predecessor_output(self):
        """守卫在前置节点完成之后求值，可读取前置节点写入的状态。"""
        state: dict[str, bool] = {}

        graph = TaskGraph(
            [
                FunctionTask("Check", lambda ctx: ctx.update(up_to_date=True)),
                FunctionTask("Build", lambda ctx: ctx.update(built=True),
                             dependencies=["Check"], guard=lambda ctx: not ctx["up_to_date"]),
            ],
            terminals=["Build"],
        )
        result = await GraphExecutor().execute(graph, context=state)

        assert result.results["Build"].status == NodeStatus.SKIPPED
        assert "built" not in state


# ======================================================================
# Test 3: 失败传播
# ======================================================================


class TestFailurePropagation:

    @pytest.mark.asyncio
    async def test_failure_propagates_but_sibling_completes(self):
        """A 失败 -> B、C 级联失败且未执行；无关兄弟 X 成功。"""
        log: list[str] = []
        graph = TaskGraph(
            [
                FunctionTask("A", _failing("boom")),
                FunctionTask("B", _recorder(log, "B"), dependencies=["A"]),
                FunctionTask("C", _recorder(log, "C"), dependencies=["B"]),
                FunctionTask("X", _recorder(log, "X", delay=0.01)),
            ],
            terminals=["C", "X"],
        )
        events: list[tuple[str, str]] = []
        executor = GraphExecutor(on_event=lambda e, d: events.append((e, getattr(d.get("node"), "id", ""))))

        result = await executor.execute(graph, context=None)

        assert result.results["A"].status == NodeStatus.FAILED
        assert "boom" in result.results["A"].error
        assert isinstance(result.results["A"].exception, RuntimeError)
        assert result.results["B"].status == NodeStatus.FAILED
        assert result.results["C"].status == NodeStatus.FAILED
        assert result.results["C"].propagated_from == "A", "级联失败应记录最初的失败节点"
        assert result.results["X"].status == NodeStatus.SUCCEEDED
        assert log == ["X"], "B、C 的执行体不应被调用"
        assert not result.succeeded
        assert [f.node_id for f in result.root_failures] == ["A"]
        assert ("node_failed", "A") in events

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_running_sibling(self):
        """失败不会取消已在运行的兄弟节点。"""
        log: list[str] = []
        graph = TaskGraph(
            [
                FunctionTask("Slow", _recorder(log, "Slow", delay=0.05)),
                FunctionTask("Fast", _failing("fast failure")),
            ],
            terminals=["Slow", "Fast"],
        )
        result = await GraphExecutor().execute(graph, context=None)

        assert result.results["Slow"].status == NodeStatus.SUCCEEDED
        assert log == ["Slow"]
        assert result.results[DEFAULT_NODE].status == NodeStatus.FAILED

    @pytest.mark.asyncio
    async def test_guard_not_evaluated_after_failed_predecessor(self):
        guard_calls: list[str] = []
        graph = TaskGraph(
            [
                FunctionTask("A", _failing("x")),
                FunctionTask("B", dependencies=["A"], guard=lambda ctx: guard_calls.append("B") or True),
            ],
            terminals=["B"],
        )
        await GraphExecutor().execute(graph, context=None)
        assert guard_calls == []


# ======================================================================
# Test 4: 调度不变量与并发
# ======================================================================


class TestSchedulingInvariants:

    @pytest.mark.asyncio
    async def test_no_node_runs_before_predecessors_are_terminal(self):
        """每个节点进入 RUNNING 时，其所有前置节点都已处于终态。"""
        log: list[str] = []
        graph = _diamond(log)
        violations: list[str] = []

        def check(event, data):
            if event != "node_running":
                return
            node: TaskNode = data["node"]
            for dep in graph.get_dependency_ids(node.id):
                if graph.nodes[dep].status not in TERMINAL_STATUSES:
                    violations.append(f"{node.id} before {dep}")

        result = await GraphExecutor(on_event=check).execute(graph, context=None)

        assert violations == []
        assert all(n.status in TERMINAL_STATUSES for n in graph.nodes.values()), "每个节点都应恰好到达一个终态"
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_independent_nodes_run_concurrently(self):
        """无依赖关系的节点并发运行：两个节点互相等待对方开始也不会死锁。"""
        started = {name: asyncio.Event() for name in ("P", "Q")}

        def waits_for(me: str, other: str):
            async def body(ctx):
                started[me].set()
                await asyncio.wait_for(started[other].wait(), timeout=1)
            return body

        graph = TaskGraph(
            [FunctionTask("P", waits_for("P", "Q")), FunctionTask("Q", waits_for("Q", "P"))],
            terminals=["P", "Q"],
        )
        result = await GraphExecutor().execute(graph, context=None)
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_parallel_cap_is_respected(self):
        running = 0
        peak = 0

        async def body(ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        graph = TaskGraph([FunctionTask(f"T{i}", body) for i in range(6)], terminals=[f"T{i}" for i in range(6)])
        result = await GraphExecutor(max_parallel=2).execute(graph, context=None)

        assert result.succeeded
        assert peak == 2


# ======================================================================
# Test 5: 目标子图
# ======================================================================


class TestTargetSelection:

    @pytest.mark.asyncio
    async def test_only_ancestors_of_target_run(self):
        log: list[str] = []
        graph = TaskGraph(
            [
                FunctionTask("Prepare", _recorder(log, "Prepare")),
                FunctionTask("Package", _recorder(log, "Package"), dependencies=["Prepare"]),
                FunctionTask("Dump", _recorder(log, "Dump"), dependencies=["Prepare"]),
            ],
            terminals=["Package"],
        )
        result = await GraphExecutor().execute(graph, context=None, target="Dump")

        assert sorted(log) == ["Dump", "Prepare"]
        assert set(result.results) == {"Prepare", "Dump"}
        assert graph.nodes["Package"].status == NodeStatus.PENDING, "范围外的节点保持 PENDING"

    @pytest.mark.asyncio
    async def test_async_and_sync_bodies(self):
        seen: list[str] = []

        async def async_body(ctx):
            seen.append("async")

        graph = TaskGraph(
            [FunctionTask("S", lambda ctx: seen.append("sync")), FunctionTask("A", async_body, dependencies=["S"])],
            terminals=["A"],
        )
        await GraphExecutor().execute(graph, context=None)
        assert seen == ["sync", "async"]


# ======================================================================
# Test 6: 状态机
# ======================================================================


class TestNodeStateMachine:

    def test_legal_path(self):
        transitions: list[tuple[str, str, str]] = []
        sm = NodeStateMachine(
            listener=lambda node, old, new, result: transitions.append((node.id, old.value, new.value)),
        )
        node = TaskNode(id="n")

        sm.transition(node, NodeStatus.RUNNING)
        sm.transition(node, NodeStatus.SUCCEEDED, TaskResult(node_id="n", status=NodeStatus.SUCCEEDED))

        assert node.status == NodeStatus.SUCCEEDED
        assert node.error is None
        assert transitions == [("n", "pending", "running"), ("n", "running", "succeeded")]

    def test_terminal_states_are_final(self):
        sm = NodeStateMachine()
        node = TaskNode(id="n", status=NodeStatus.SKIPPED)
        with pytest.raises(InvalidTransitionError):
            sm.transition(node, NodeStatus.RUNNING)

    def test_running_cannot_be_skipped(self):
        sm = NodeStateMachine()
        node = TaskNode(id="n", status=NodeStatus.RUNNING)
        assert NodeStatus.SKIPPED not in VALID_TRANSITIONS[NodeStatus.RUNNING]
        with pytest.raises(InvalidTransitionError, match="running to skipped"):
            sm.transition(node, NodeStatus.SKIPPED)
        assert node.status == NodeStatus.RUNNING, "非法转移不改变节点状态"

    def test_failed_result_records_error(self):
        seen: list[TaskResult | None] = []
        sm = NodeStateMachine(listener=lambda node, old, new, result: seen.append(result))
        node = TaskNode(id="n")
        result = TaskResult(node_id="n", status=NodeStatus.FAILED, error="Predecessor 'A' failed", propagated_from="A")

        sm.transition(node, NodeStatus.FAILED, result)

        assert node.error == "Predecessor 'A' failed"
        assert seen == [result], "监听者收到引起转移的结果"

    def test_listener_errors_are_contained(self):
        def broken(node, old, new, result):
            raise RuntimeError("ui exploded")

        sm = NodeStateMachine(listener=broken)
        node = TaskNode(id="n")
        sm.transition(node, NodeStatus.RUNNING)
        assert node.status == NodeStatus.RUNNING

    @pytest.mark.asyncio
    async def test_executor_events_follow_transitions(self):
        """每次转移产生 node_transition 与 node_<状态> 两个事件，且携带结果。"""
        events: list[tuple[str, object]] = []
        graph = TaskGraph(
            [FunctionTask("A", lambda ctx: None), FunctionTask("B", lambda ctx: None, dependencies=["A"], guard=lambda ctx: False)],
            terminals=["B"],
        )

        await GraphExecutor(on_event=lambda e, d: events.append((e, d))).execute(graph, context=None)

        per_node = [(e, d["node"].id) for e, d in events if e.startswith("node_") and e != "node_transition"]
        assert per_node == [
            ("node_running", "A"), ("node_succeeded", "A"),
            ("node_skipped", "B"),
            ("node_running", DEFAULT_NODE), ("node_succeeded", DEFAULT_NODE),
        ]
        succeeded = [d for e, d in events if e == "node_succeeded"]
        assert all(d["result"].status == NodeStatus.SUCCEEDED for d in succeeded)
        transitions = [(d["node_id"], d["to"]) for e, d in events if e == "node_transition"]
        assert transitions[:2] == [("A", "running"), ("A", "succeeded")]
