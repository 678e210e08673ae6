"""
Error taxonomy for the build pipeline.
构建流水线的异常分类。

  - ConfigurationError:       missing / malformed game metadata or arguments
  - ToolError:                an external executable exited non-zero
  - OutputFormatError:        an external tool produced output of an unexpected shape
  - PullRequestInFlightError: a version-entry branch already exists on the remote
  - PackageNotFoundError:     a dependency package is missing from every NuGet source

  - ConfigurationError:       游戏元数据或命令行参数缺失/格式错误
  - ToolError:                外部可执行程序返回非零退出码
  - OutputFormatError:        外部工具输出格式不符合预期
  - PullRequestInFlightError: 远端已存在同名版本分支（说明 PR 已在处理中）
  - PackageNotFoundError:     所有 NuGet 源中都找不到依赖包
"""

from __future__ import annotations


class BuildError(Exception):
    """Base class for all pipeline errors. 所有流水线异常的基类。"""


class ConfigurationError(BuildError):
    """Missing or invalid game identifier, metadata or build id."""


class ToolError(BuildError):
    """
    An external tool (SteamCMD, dotnet, git, gh, publicizer) failed.
    外部工具执行失败，携带工具名和退出码。
    """

    def __init__(self, tool: str, exit_code: int | None = None, message: str | None = None):
        self.tool = tool
        self.exit_code = exit_code
        if message is None:
            message = f"{tool} returned exit code {exit_code}."
        super().__init__(message)


class OutputFormatError(BuildError):
    """An external tool's output did not contain what we expected."""


class PullRequestInFlightError(BuildError):
    """
    The version-entry branch already exists on 'origin'; a resolution is
    assumed to be in flight already.
    """


class PackageNotFoundError(BuildError):
    """A dependency package could not be downloaded from any configured source."""
