"""
Configuration module for the GameLib Dehumidifier.
Loads settings from environment variables or .env file.
GameLib Dehumidifier 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Repository layout ---
# --- 仓库目录结构 ---
ROOT_DIR = os.path.abspath(os.path.expanduser(os.getenv("DEHUMIDIFIER_ROOT", os.getcwd())))  # 仓库根目录，Games/ 位于其下
GAMES_DIR_NAME = os.getenv("GAMES_DIR_NAME", "Games")                                      # 存放各游戏元数据的目录名
NUGET_PACKAGES_DIR = os.path.expanduser(os.getenv("NUGET_PACKAGES_DIR", "~/.nuget/packages"))  # 依赖包下载缓存目录

# --- NuGet ---
# --- NuGet 包源 ---
NUGET_SOURCE_URL = os.getenv("NUGET_SOURCE_URL", "https://api.nuget.org/v3/index.json")        # 发布与查询用的主包源
NUGET_REGISTRATION_URL = os.getenv(
    "NUGET_REGISTRATION_URL", "https://api.nuget.org/v3/registration5-gz-semver2"
)                                                                                                # 包版本索引（registration）基址
NUGET_FLAT_CONTAINER_URL = os.getenv("NUGET_FLAT_CONTAINER_URL", "https://api.nuget.org/v3-flatcontainer")
BEPINEX_FLAT_CONTAINER_URL = os.getenv(
    "BEPINEX_FLAT_CONTAINER_URL", "https://nuget.bepinex.dev/v3/package"
)                                                                                                # 主源下载失败时的备用源
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "60"))                                           # HTTP 请求超时（秒）

# --- Packaging ---
# --- 打包参数 ---
VERSION_DISCRIMINATOR_PREFIX = os.getenv("VERSION_DISCRIMINATOR_PREFIX", "ngd")  # 版本号后缀前缀，如 1.2.3-ngd.0
PROJECT_URL = os.getenv("PROJECT_URL", "https://github.com/Lordfirespeed/NuGet-GameLib-Dehumidifier")
DEFAULT_AUTHORS = [a.strip() for a in os.getenv("DEFAULT_AUTHORS", "lordfirespeed").split(",") if a.strip()]
PROCESSED_ASSEMBLY_SUFFIX = "-stubs"                                             # 处理后程序集的文件名后缀

# --- External tools ---
# --- 外部工具可执行文件 ---
STEAMCMD_EXECUTABLES = os.getenv("STEAMCMD_EXECUTABLES", "steamcmd,steamcmd.exe").split(",")
DOTNET_EXECUTABLES = os.getenv("DOTNET_EXECUTABLES", "dotnet,dotnet.exe").split(",")
GIT_EXECUTABLES = os.getenv("GIT_EXECUTABLES", "git,git.exe").split(",")
GH_EXECUTABLES = os.getenv("GH_EXECUTABLES", "gh,gh.exe").split(",")
PUBLICIZER_EXECUTABLES = os.getenv("PUBLICIZER_EXECUTABLES", "assembly-publicizer,assembly-publicizer.exe").split(",")

# --- Graph execution ---
# --- 任务图执行参数 ---
MAX_PARALLEL_NODES = int(os.getenv("MAX_PARALLEL_NODES", "0"))  # 同时运行的节点上限，0 表示不限制
