"""
Service adapters - Thin wrappers over the external collaborators.
服务适配器 —— 外部协作者（SteamCMD、NuGet、git、公开化工具）的轻量封装。

Each adapter is constructed once per process (see main.build_services) and
reaches tasks through the BuildContext.
每个适配器每个进程只构造一次（见 main.build_services），通过 BuildContext 传给任务。
"""

from services.process import ToolOutput, resolve_executable, run_tool
from services.steamcmd import SteamCmdClient
from services.nuget import NuGetClient, PackageManifest, PackagePublisher
from services.git import GitClient
from services.versioner import Versioner
from services.publicizer import AssemblyPublicizer
