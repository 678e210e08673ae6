"""
ProcessAssemblies - Runs the AssemblyProcessor over every depot and framework target.
ProcessAssemblies —— 对每个 depot 与目标框架运行 AssemblyProcessor。
"""

from __future__ import annotations

import asyncio
import logging

from context.build_context import BuildContext
from processing.assemblies import AssemblyProcessor, DepotSource, TargetSpec, managed_directory
from tasks.base import BuildTask

logger = logging.getLogger(__name__)


class ProcessAssembliesTask(BuildTask):
    name = "ProcessAssemblies"
    description = "Strip / publicize game assemblies into package ref folders"
    dependencies = ("DownloadDepots", "CacheDependencyAssemblyNames")

    def should_run(self, context: BuildContext) -> bool:
        return not context.package_up_to_date

    async def depot_sources(self, context: BuildContext) -> list[DepotSource]:
        metadata = context.game_metadata
        sources = []
        for depot in metadata.steam.distribution_depots:
            depot_dir = context.depot_directories.get(depot.depot_id, context.depot_directory(depot.depot_id))
            # 每个 depot 只解析一次数据目录
            source_dir = await asyncio.to_thread(managed_directory, depot_dir)
            sources.append(DepotSource(
                depot_id=depot.depot_id,
                source_dir=source_dir,
                output_root=context.package_source_dir(metadata.package_id(depot)) / "ref",
            ))
        return sources

    async def run(self, context: BuildContext) -> None:
        settings = context.game_metadata.process_settings
        targets = [
            TargetSpec(tfm=t.tfm, excluded=context.framework_dependency_assemblies.get(t.tfm, frozenset()))
            for t in context.target_version.framework_targets
        ]
        processor = AssemblyProcessor(
            transformer=context.require("publicizer"),
            ledger=context.assembly_ledger,
            exclude_patterns=settings.exclude_assemblies,
            publicize_patterns=settings.assemblies_to_publicise,
        )
        context.processing_report = await processor.process(await self.depot_sources(context), targets)
