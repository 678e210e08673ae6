"""
DAG module - Core engine for build task graph execution.
DAG 模块 —— 构建任务图执行的核心引擎。

Components:
  - graph.py:         TaskGraph data structure and graph operations
  - state_machine.py: Node lifecycle state machine
  - executor.py:      Concurrent graph executor (dispatch-on-eligible model)

模块组成：
  - graph.py:         TaskGraph 数据结构与图算法（拓扑排序、祖先子图、下游查询等）
  - state_machine.py: 节点生命周期状态机（强制合法状态转移）
  - executor.py:      并发图执行引擎（节点满足条件即派发）
"""

from dag.graph import DEFAULT_NODE, GraphValidationError, TaskGraph  # 任务有向无环图
from dag.state_machine import InvalidTransitionError, NodeStateMachine  # 节点状态机
from dag.executor import GraphExecutor      # 图执行引擎
