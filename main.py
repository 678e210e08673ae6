"""
GameLib Dehumidifier - Command line entry point.
GameLib Dehumidifier —— 命令行入口。

Builds the task graph, constructs the service adapters once, and executes the
requested target with a rich console UI showing node transitions and failures.
构建任务图，一次性构造各服务适配器，并执行指定目标；Rich 控制台 UI 实时展示节点状态与失败原因。

Usage / 用法:
    python main.py --game <folder> --build <build id> [--target Default]
    python main.py --list-targets

Exit codes / 退出码:
    0  every node in scope succeeded or was skipped
    1  a node failed
    2  configuration error before the graph ran
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

import config
from context.build_context import BuildContext
from dag.executor import GraphExecutor
from dag.graph import GraphValidationError, TaskGraph
from errors import ConfigurationError
from schema import GraphRunResult, NodeStatus, TaskNode, TaskResult
from services.git import GitClient
from services.nuget import NuGetClient, PackagePublisher
from services.publicizer import AssemblyPublicizer
from services.steamcmd import SteamCmdClient
from services.versioner import Versioner
from tasks.catalogue import build_task_graph

console = Console()

EXIT_OK = 0
EXIT_NODE_FAILED = 1
EXIT_CONFIGURATION = 2

# Status -> Rich style mapping
# 节点状态 -> Rich 样式映射
_STATUS_STYLES = {
    "pending": "dim",
    "running": "bold yellow",
    "succeeded": "green",
    "failed": "red",
    "skipped": "dim strike",
}


# ======================================================================
# Graph visualization
# 任务图可视化
# ======================================================================

def _styled_status(status: NodeStatus) -> str:
    style = _STATUS_STYLES.get(status.value, "white")
    return f"[{style}]({status.value})[/{style}]"


def _build_graph_tree(graph: TaskGraph, target: str) -> Tree:
    """
    Tree rooted at the target; each node lists its predecessors beneath it.
    Nodes already shown are printed once and referenced afterwards.

    以目标为根的树，每个节点下列出其前置节点；已展示过的节点只标注引用。
    """
    root = graph.nodes[target]
    tree = Tree(f"[bold]{root.id}[/bold] {_styled_status(root.status)}")
    seen: set[str] = set()

    def add(branch: Tree, node_id: str) -> None:
        node = graph.nodes[node_id]
        if node_id in seen:
            branch.add(f"[dim]{node_id} (see above)[/dim]")
            return
        seen.add(node_id)
        child = branch.add(f"[cyan]{node_id}[/cyan] {_styled_status(node.status)} [dim]{node.description}[/dim]")
        for dep in node.dependencies:
            add(child, dep)

    for dep in root.dependencies:
        add(tree, dep)
    return tree


def _results_table(result: GraphRunResult) -> Table:
    table = Table(title=f"Target '{result.target}'", border_style="cyan")
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Time", justify="right", style="dim")
    table.add_column("Detail", style="dim")
    for node_id, r in result.results.items():
        style = _STATUS_STYLES.get(r.status.value, "white")
        table.add_row(node_id, f"[{style}]{r.status.value}[/{style}]", f"{r.duration:.2f}s", r.error or "")
    return table


# ======================================================================
# UI Event Handler
# UI 事件处理器
# ======================================================================

def on_event(event: str, data: Any) -> None:
    """
    Render executor events on the console.
    将执行器事件渲染到控制台。
    """

    if event == "graph_started":
        graph: TaskGraph = data["graph"]
        target: str = data["target"]
        console.print()
        console.print(Panel(
            _build_graph_tree(graph, target),
            title=f"[bold magenta]Target {target}[/bold magenta]",
            border_style="magenta",
        ))
        console.print(f"  [dim]{len(data['order'])} tasks in scope[/dim]")

    elif event == "node_running":
        node: TaskNode = data["node"]
        console.print(f"    [yellow]>> {node.id}:[/yellow] {node.description}")

    elif event == "node_succeeded":
        node: TaskNode = data["node"]
        result: TaskResult = data["result"]
        console.print(f"    [green]<< {node.id} succeeded[/green] [dim]({result.duration:.2f}s)[/dim]")

    elif event == "node_skipped":
        node: TaskNode = data["node"]
        console.print(f"    [dim]-- {node.id} skipped (precondition not met)[/dim]")

    elif event == "node_failed":
        node: TaskNode = data["node"]
        result: TaskResult = data["result"]
        if result.propagated_from:
            # 级联失败只显示一行，根因已单独展示
            console.print(f"    [red]<< {node.id} not run:[/red] [dim]{result.error}[/dim]")
        else:
            console.print(f"    [red]<< {node.id} FAILED.[/red]")
            console.print(Panel(result.error or "unknown error", title=f"{node.id} Error", border_style="red"))

    elif event == "node_transition":
        pass  # 已由 node_running/succeeded/failed/skipped 事件处理

    elif event == "graph_finished":
        result: GraphRunResult = data["result"]
        console.print()
        console.print(_results_table(result))


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dehumidifier",
        description="Republish a Steam game's stripped assemblies as NuGet packages.",
    )
    parser.add_argument("--game", default="", help="Folder name under Games/")
    parser.add_argument("--build", type=int, default=None, help="Steam build id to package")
    parser.add_argument("--steam-username", default="", help="Steam account used by SteamCMD")
    parser.add_argument("--nuget-api-key", default="", help="API key for pushing packages")
    parser.add_argument("--target", default=None, help="Task to run (default: Default)")
    parser.add_argument("--list-targets", action="store_true", help="List tasks and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_services(args: argparse.Namespace) -> dict[str, Any]:
    """
    Construct every service adapter once for this process.
    为本进程一次性构造所有服务适配器。
    """
    git = GitClient(config.ROOT_DIR)
    return {
        "steam": SteamCmdClient(args.steam_username),
        "nuget": NuGetClient(),
        "publisher": PackagePublisher(),
        "git": git,
        "publicizer": AssemblyPublicizer(),
        "versioner": Versioner(git),
    }


def list_targets(graph: TaskGraph) -> None:
    table = Table(title="Tasks", border_style="cyan")
    table.add_column("Task", style="cyan")
    table.add_column("Depends on", style="dim")
    table.add_column("Description")
    for node_id in graph.topological_sort():
        node = graph.nodes[node_id]
        table.add_row(node_id, ", ".join(node.dependencies) or "-", node.description)
    console.print(table)


async def run(args: argparse.Namespace) -> int:
    try:
        graph = build_task_graph()
    except GraphValidationError as exc:
        console.print(f"[red]Invalid task graph: {exc}[/red]")
        return EXIT_CONFIGURATION

    if args.list_targets:
        list_targets(graph)
        return EXIT_OK

    target = args.target or graph.default_name
    try:
        scope = graph.ancestors(target)
        if scope - {"Clean"} and not args.game.strip():
            raise ConfigurationError("No game folder name provided. Supply one with the '--game [folder name]' switch.")
    except (GraphValidationError, ConfigurationError) as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIGURATION

    services = build_services(args)
    context = BuildContext(
        game=args.game,
        build_id=args.build,
        steam_username=args.steam_username,
        nuget_api_key=args.nuget_api_key,
        root_dir=config.ROOT_DIR,
        **services,
    )

    executor = GraphExecutor(on_event=on_event)
    try:
        result = await executor.execute(graph, context, target)
    finally:
        await services["nuget"].aclose()

    if result.succeeded:
        console.print(f"\n[bold green]Target '{target}' completed.[/bold green]")
        return EXIT_OK

    for failure in result.root_failures:
        console.print(f"[red]{failure.node_id}: {failure.error}[/red]")
    return EXIT_NODE_FAILED


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        code = EXIT_NODE_FAILED
    sys.exit(code)


if __name__ == "__main__":
    main()
