"""
构建上下文测试 — 验证一次写入字段、只读映射、路径推导与服务句柄检查。

运行方式:
    python -m pytest tests/test_build_context.py -v
"""

from __future__ import annotations

import pytest

from context.build_context import BuildContext, ContextFieldAlreadySetError, ContextFieldUnsetError
from errors import ConfigurationError
from schema import GameVersionEntry, GameVersionMap


@pytest.fixture
def context(tmp_path):
    return BuildContext("LethalCompany", build_id=100, root_dir=tmp_path)


class TestWriteOnceFields:

    def test_read_before_set(self, context):
        with pytest.raises(ContextFieldUnsetError, match="app_info"):
            _ = context.app_info
        assert not context.is_populated("app_info")

    def test_second_write_rejected(self, context):
        context.package_up_to_date = False
        with pytest.raises(ContextFieldAlreadySetError):
            context.package_up_to_date = True
        assert context.package_up_to_date is False
        assert context.is_populated("package_up_to_date")

    def test_mappings_are_read_only(self, context, tmp_path):
        context.depot_directories = {1: tmp_path / "depot_1"}
        with pytest.raises(TypeError):
            context.depot_directories[2] = tmp_path / "depot_2"
        assert dict(context.depot_directories) == {1: tmp_path / "depot_1"}

    def test_version_map_keeps_its_type(self, context):
        context.game_versions = GameVersionMap({100: GameVersionEntry(buildId=100, timeUpdated=1)})
        assert isinstance(context.game_versions, GameVersionMap)
        assert context.game_versions.latest().build_id == 100

    def test_unknown_field_name(self, context):
        with pytest.raises(AttributeError):
            context.is_populated("game")

    def test_contexts_do_not_share_state(self, tmp_path):
        first = BuildContext("A", root_dir=tmp_path)
        second = BuildContext("B", root_dir=tmp_path)
        first.outdated_build_ids = [1]
        assert not second.is_populated("outdated_build_ids")


class TestTargetVersion:

    def test_known_build(self, context):
        entry = GameVersionEntry(buildId=100, timeUpdated=5, gameVersion="v50")
        context.game_versions = GameVersionMap({100: entry})
        assert context.target_version.game_version == "v50"

    def test_missing_build_switch(self, tmp_path):
        context = BuildContext("LethalCompany", root_dir=tmp_path)
        with pytest.raises(ConfigurationError, match="--build"):
            _ = context.target_version

    def test_unknown_build(self, context):
        context.game_versions = GameVersionMap()
        with pytest.raises(ConfigurationError, match="not a known version"):
            _ = context.target_version


class TestPathsAndServices:

    def test_layout(self, context, tmp_path):
        game_dir = tmp_path.resolve() / "Games" / "LethalCompany"
        assert context.game_dir == game_dir
        assert context.metadata_path == game_dir / "metadata.json"
        assert context.versions_dir == game_dir / "versions"
        assert context.depot_directory(7) == game_dir / "steam" / "depot_7"
        assert context.package_ref_dir("X.GameLibs", "net472") == game_dir / "nupkgs" / "X.GameLibs" / "ref" / "net472"
        assert context.package_archive_path("X.GameLibs") == game_dir / "nupkgs" / "X.GameLibs.nupkg"

    def test_blank_game_name(self, tmp_path):
        context = BuildContext("   ", root_dir=tmp_path)
        with pytest.raises(ConfigurationError, match="--game"):
            _ = context.game_dir

    def test_require_missing_service(self, context):
        with pytest.raises(ConfigurationError, match="steam"):
            context.require("steam")

    def test_require_present_service(self, context):
        context.git = object()
        assert context.require("git") is context.git
