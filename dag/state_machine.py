"""
Node State Machine - Validates node lifecycle transitions and reports them.
节点状态机 —— 校验节点生命周期转移并向外通报。

Every status change of a TaskNode goes through NodeStateMachine.transition():
it checks the table below, records the node's status and error, and hands the
node plus the TaskResult that caused the change to a single listener. The
executor turns that one callback into its node_* UI events, so a node's state
and the events describing it cannot drift apart.

TaskNode 的每次状态变化都经过 NodeStateMachine.transition()：校验下方的转移表，
记录节点状态与错误信息，并把节点及引起变化的 TaskResult 交给唯一的监听者。
执行器由这一个回调派生出各个 node_* UI 事件，节点状态与事件不会不一致。

Transition graph:
转移图：
    PENDING ──> RUNNING ──> SUCCEEDED   (body returned / 执行体正常返回)
                        ──> FAILED      (body raised / 执行体抛出异常)
    PENDING ──> SKIPPED                 (guard returned False / 守卫条件不满足)
    PENDING ──> FAILED                  (predecessor failed, or the guard raised / 上游失败级联或守卫抛出异常)
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from schema import NodeStatus, TaskNode, TaskResult

logger = logging.getLogger(__name__)

# listener(node, old_status, new_status, result)
TransitionListener = Callable[[TaskNode, NodeStatus, NodeStatus, Optional[TaskResult]], None]


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """


VALID_TRANSITIONS: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.RUNNING, NodeStatus.SKIPPED, NodeStatus.FAILED}),
    NodeStatus.RUNNING: frozenset({NodeStatus.SUCCEEDED, NodeStatus.FAILED}),
    NodeStatus.SUCCEEDED: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.SKIPPED: frozenset(),
}


class NodeStateMachine:
    """
    Applies node transitions and forwards them to one listener.
    应用节点状态转移，并转发给唯一的监听者。
    """

    def __init__(self, listener: TransitionListener | None = None):
        self._listener = listener

    def transition(self, node: TaskNode, new_status: NodeStatus, result: TaskResult | None = None) -> None:
        """
        Move `node` to `new_status`. A result carrying an error message is
        copied onto the node. Raises InvalidTransitionError if illegal.

        将 `node` 转移到 `new_status`；若 result 带有错误信息则记录到节点上。非法转移抛出 InvalidTransitionError。
        """
        allowed = VALID_TRANSITIONS[node.status]
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Node '{node.id}': cannot transition from {node.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in allowed)}"
            )

        old_status = node.status
        node.status = new_status
        if result is not None and result.error is not None:
            node.error = result.error
        logger.debug("[SM] %s: %s -> %s", node.id, old_status.value, new_status.value)

        if self._listener is None:
            return
        try:
            self._listener(node, old_status, new_status, result)
        except Exception:
            # 监听者（UI）异常不能影响主流程
            logger.debug("[SM] Transition listener failed for %s", node.id, exc_info=True)
