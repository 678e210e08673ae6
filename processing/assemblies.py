"""
Assembly Processor - Strip / publicize each game assembly once, copy it everywhere it is needed.
程序集处理器 —— 每个游戏程序集只剥离/公开化一次，再复制到所有需要它的位置。

For every (distribution unit x framework target x matching file):
  1. transform the file once, keyed by its absolute path in the WorkLedger
     (output: <stem>-stubs.dll beside the source)
  2. copy the processed artifact into the target's output directory under
     the original file name

对每个（分发单元 x 目标框架 x 匹配文件）：
  1. 以绝对路径为键，通过 WorkLedger 对文件只执行一次转换（输出为源文件旁的 <stem>-stubs.dll）
  2. 将处理后的产物以原文件名复制到目标框架的输出目录

A file is considered when it matches the include pattern (*.dll), matches
none of the exclude patterns, is not itself a processed artifact and is not
already supplied to that target by a dependency package.
文件需满足：匹配包含模式（*.dll）、不匹配任何排除模式、不是处理产物本身、且未由该目标框架的依赖包提供。

A failed transform fails every copy that needs it, never unrelated files.
Once the whole fan-out has settled, failures are raised together as an
AssemblyProcessingError.
转换失败只影响依赖它的复制，不影响无关文件；全部扇出结束后，失败统一以 AssemblyProcessingError 抛出。
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

import config
from context.ledger import WorkLedger
from errors import BuildError, ConfigurationError

logger = logging.getLogger(__name__)

ASSEMBLY_INCLUDE_PATTERN = "*.dll"


class AssemblyTransformer(Protocol):
    """Produces `destination` from `source`; strips always, publicizes on request."""

    async def transform(self, source: Path, destination: Path, publicize: bool) -> None: ...


class DepotSource(BaseModel):
    """
    One distribution unit: where its managed assemblies live and where its
    per-framework outputs go (<output_root>/<tfm>/).
    """
    depot_id: int
    source_dir: Path
    output_root: Path

    def output_dir(self, tfm: str) -> Path:
        return self.output_root / tfm


class TargetSpec(BaseModel):
    """A framework target plus the assembly names its dependencies already supply."""
    tfm: str
    excluded: frozenset[str] = frozenset()


class AssemblyFailure(BaseModel):
    source: str
    destination: str
    error: str


class ProcessingReport(BaseModel):
    """
    What one processing run did.
    一次处理运行的结果汇总。
    """
    transformed: list[str] = Field(default_factory=list)   # 实际执行了转换的源文件
    copied: list[str] = Field(default_factory=list)        # 写入的目标文件
    excluded: list[str] = Field(default_factory=list)      # 因依赖包已提供而跳过的 "<tfm>/<文件名>"
    failures: list[AssemblyFailure] = Field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{len(self.transformed)} transformed, {len(self.copied)} copied, "
            f"{len(self.excluded)} excluded, {len(self.failures)} failed"
        )


class AssemblyProcessingError(BuildError):
    """One or more assemblies could not be processed or copied."""

    def __init__(self, report: ProcessingReport, exceptions: Sequence[BaseException] = ()):
        self.report = report
        self.exceptions = list(exceptions)
        details = "; ".join(f"{f.source}: {f.error}" for f in report.failures[:5])
        more = f" (+{len(report.failures) - 5} more)" if len(report.failures) > 5 else ""
        super().__init__(f"{len(report.failures)} assembly operations failed: {details}{more}")


# ======================================================================
# Depot layout
# Depot 目录结构
# ======================================================================

def find_data_directory(depot_dir: Path) -> Path:
    """
    Locate the Unity data directory of a downloaded depot.
    定位已下载 depot 中的 Unity 数据目录。

      Windows: <exe stem>_Data   (UnityCrashHandler*.exe ignored)
      Linux:   <x86_64 stem>_Data
      macOS:   <name>.app/Contents/Resources/Data
    """
    if not depot_dir.is_dir():
        raise ConfigurationError(f"Depot directory {depot_dir} does not exist")

    for pattern in ("*.exe", "*.x86_64"):
        for executable in sorted(depot_dir.glob(pattern)):
            if executable.is_file() and not executable.name.startswith("UnityCrashHandler"):
                return depot_dir / f"{executable.stem}_Data"

    for bundle in sorted(depot_dir.glob("*.app")):
        return bundle / "Contents" / "Resources" / "Data"

    raise ConfigurationError(
        f"Unsupported distribution platform - couldn't find executable/app bundle in {depot_dir}"
    )


def managed_directory(depot_dir: Path) -> Path:
    return find_data_directory(depot_dir) / "Managed"


def processed_path(source: Path) -> Path:
    return source.with_name(f"{source.stem}{config.PROCESSED_ASSEMBLY_SUFFIX}.dll")


def partial_path(artifact: Path) -> Path:
    """Where a transform writes before its output is promoted to `artifact`."""
    return artifact.with_name(artifact.name + ".part")


def _matches(name: str, patterns: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, p.lower()) for p in patterns)


# ======================================================================
# Processor
# 处理器
# ======================================================================

class AssemblyProcessor:
    """
    Fans assembly processing out across depots, targets and files.
    将程序集处理扇出到各 depot、各目标框架与各文件。
    """

    def __init__(
        self,
        transformer: AssemblyTransformer,
        ledger: WorkLedger,
        exclude_patterns: Iterable[str] = (),
        publicize_patterns: Iterable[str] = (),
        include_pattern: str = ASSEMBLY_INCLUDE_PATTERN,
    ):
        self._transformer = transformer
        self._ledger = ledger
        self.exclude_patterns = list(exclude_patterns)
        self.publicize_patterns = list(publicize_patterns)
        self.include_pattern = include_pattern

    def matching_assemblies(self, source_dir: Path) -> list[Path]:
        """Files directly in `source_dir` that qualify for processing."""
        suffix = f"{config.PROCESSED_ASSEMBLY_SUFFIX}.dll"
        return [
            path for path in sorted(source_dir.iterdir())
            if path.is_file()
            and _matches(path.name, [self.include_pattern])
            and not _matches(path.name, self.exclude_patterns)
            and not path.name.lower().endswith(suffix)
        ]

    def should_publicize(self, source: Path) -> bool:
        return _matches(source.name, self.publicize_patterns)

    async def process(self, units: Sequence[DepotSource], targets: Sequence[TargetSpec]) -> ProcessingReport:
        """
        Process every unit for every target and return the report.
        Raises AssemblyProcessingError after the fan-out if anything failed.

        为每个目标框架处理每个分发单元并返回报告；若有失败，在扇出完成后抛出 AssemblyProcessingError。
        """
        report = ProcessingReport()
        errors: list[BaseException] = []
        jobs = []

        for unit in units:
            files = await asyncio.to_thread(self.matching_assemblies, unit.source_dir)
            logger.info("[Assemblies] Depot %d: %d assemblies in %s", unit.depot_id, len(files), unit.source_dir)
            for target in targets:
                out_dir = unit.output_dir(target.tfm)
                await asyncio.to_thread(out_dir.mkdir, parents=True, exist_ok=True)
                for source in files:
                    if source.name in target.excluded:
                        report.excluded.append(f"{target.tfm}/{source.name}")
                        continue
                    jobs.append(self._process_and_copy(source, out_dir / source.name, report, errors))

        await asyncio.gather(*jobs)

        logger.info("[Assemblies] %s", report.summary())
        if report.failures:
            raise AssemblyProcessingError(report, errors)
        return report

    async def _process_and_copy(
        self,
        source: Path,
        destination: Path,
        report: ProcessingReport,
        errors: list[BaseException],
    ) -> None:
        artifact = processed_path(source)
        publicize = self.should_publicize(source)

        async def transform() -> None:
            logger.info("[Assemblies] Stripping %s%s", "and publicising " if publicize else "", source.name)
            # 先写 .part，成功后才替换为正式产物
            partial = partial_path(artifact)
            try:
                await self._transformer.transform(source, partial, publicize)
                await asyncio.to_thread(partial.replace, artifact)
            finally:
                await asyncio.to_thread(partial.unlink, missing_ok=True)
            report.transformed.append(str(source))

        try:
            await self._ledger.run_once(str(source.resolve()), transform, already_done=artifact.exists)
            await asyncio.to_thread(shutil.copyfile, artifact, destination)
        except Exception as exc:
            logger.error("[Assemblies] %s -> %s failed: %s", source.name, destination, exc)
            report.failures.append(AssemblyFailure(source=str(source), destination=str(destination), error=str(exc)))
            errors.append(exc)
            return
        report.copied.append(str(destination))
