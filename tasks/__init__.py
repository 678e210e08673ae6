"""
Tasks - The build pipeline's task nodes.
任务 —— 构建流水线的任务节点。

The graph itself is assembled in tasks.catalogue.build_task_graph().
任务图由 tasks.catalogue.build_task_graph() 组装。
"""

from tasks.base import BuildTask, FunctionTask
