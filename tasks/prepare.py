"""
Workspace tasks - Clean, Prepare, DumpGameVersions.
工作区任务 —— 清理、加载游戏元数据、回写版本条目。
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from pydantic import ValidationError

from context.build_context import BuildContext
from errors import ConfigurationError
from schema import GameMetadata, GameVersionEntry, GameVersionMap
from tasks.base import BuildTask

logger = logging.getLogger(__name__)


def read_game_metadata(path: Path) -> GameMetadata:
    try:
        return GameMetadata.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Game metadata {path} does not exist") from exc
    except ValidationError as exc:
        raise ConfigurationError(f"Game metadata {path} could not be deserialized:\n{exc}") from exc


def read_game_versions(versions_dir: Path) -> GameVersionMap:
    versions = GameVersionMap()
    if not versions_dir.is_dir():
        return versions
    for path in sorted(versions_dir.glob("*.json")):
        try:
            entry = GameVersionEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise ConfigurationError(f"Game version {path.name} could not be deserialized:\n{exc}") from exc
        versions[entry.build_id] = entry
    return versions


def write_version_entry(versions_dir: Path, entry: GameVersionEntry) -> Path:
    """Serialize one entry to versions/<build id>.json (camelCase keys)."""
    versions_dir.mkdir(parents=True, exist_ok=True)
    path = versions_dir / f"{entry.build_id}.json"
    path.write_text(entry.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n", encoding="utf-8")
    return path


class CleanTask(BuildTask):
    name = "Clean"
    description = "Delete previous build artifacts (Games/*/dist)"

    async def run(self, context: BuildContext) -> None:
        logger.info("[Clean] Cleaning up previous build artifacts...")
        for dist in sorted(context.games_dir.glob("*/dist")):
            if dist.is_dir():
                await asyncio.to_thread(shutil.rmtree, dist)
                logger.debug("[Clean] Removed %s", dist)


class PrepareTask(BuildTask):
    name = "Prepare"
    description = "Decode metadata.json and versions/*.json"
    dependencies = ("Clean",)

    async def run(self, context: BuildContext) -> None:
        game_dir = context.game_dir  # 未提供 --game 时抛出 ConfigurationError
        if not game_dir.is_dir():
            raise ConfigurationError(f"Game folder '{context.game}' not found under {context.games_dir}")

        logger.info("[Prepare] Deserializing game metadata ...")
        context.game_metadata = await asyncio.to_thread(read_game_metadata, context.metadata_path)
        context.game_versions = await asyncio.to_thread(read_game_versions, context.versions_dir)
        logger.info("[Prepare] %s: %d known versions", context.game_metadata.nuget.name, len(context.game_versions))


class DumpGameVersionsTask(BuildTask):
    name = "DumpGameVersions"
    description = "Re-serialize every known version entry"
    dependencies = ("Prepare",)

    async def run(self, context: BuildContext) -> None:
        for entry in sorted(context.game_versions.values()):
            path = await asyncio.to_thread(write_version_entry, context.versions_dir, entry)
            logger.info("[DumpGameVersions] Wrote %s", path.name)
