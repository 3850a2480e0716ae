#!/usr/bin/env python3
"""
pytest共通設定とフィクスチャ

テスト実行時の共通ロギング設定と、ワールド・シーン・クロックの
フィクスチャを提供します。
"""

import os
import sys

import numpy as np
import pytest

# shapecast モジュールのパス追加
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from shapecast import setup_logging, get_logger
from shapecast.clock import FrameClock, reset_frame_clock
from shapecast.config import reset_config
from shapecast.data_types import Pose
from shapecast.debug.adornments import reset_adornment_cache
from shapecast.geometry.world import MeshWorld, WorldPart, reset_default_world
from shapecast.scene import SceneNode, add_emission_point

# =============================================================================
# テストロギング設定
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """テスト全体のロギング設定"""
    setup_logging(level="DEBUG")
    logger = get_logger("test")
    logger.info("=== テストセッション開始 ===")
    yield
    logger.info("=== テストセッション終了 ===")


@pytest.fixture
def test_logger():
    """テスト用ロガー"""
    return get_logger("test")


@pytest.fixture(autouse=True)
def reset_globals():
    """テストごとに共通インスタンスをリセット"""
    yield
    reset_config()
    reset_frame_clock()
    reset_default_world()
    reset_adornment_cache()


# =============================================================================
# ワールド・シーン
# =============================================================================

def make_wall_world(z: float = 5.0, name: str = "Wall") -> MeshWorld:
    """z 平面に壁を1枚置いたワールドを作成"""
    world = MeshWorld()
    world.add_part(WorldPart.plane(name, center=(0.3, 0.45, z), normal=(0.0, 0.0, 1.0), half_extent=20.0))
    return world


def make_sword(num_points: int = 1, spacing: float = 1.0) -> SceneNode:
    """刃に沿ってエミッションポイントを並べた剣ノードを作成"""
    sword = SceneNode("Sword")
    blade = SceneNode("Blade", parent=sword)
    for i in range(num_points):
        add_emission_point(blade, f"DmgPoint{i}", (spacing * i, 0.0, 0.0))
    return sword


@pytest.fixture
def wall_world() -> MeshWorld:
    """z=5 に壁があるワールド"""
    return make_wall_world()


@pytest.fixture
def sword() -> SceneNode:
    """エミッションポイント3つの剣"""
    return make_sword(3)


@pytest.fixture
def manual_clock() -> FrameClock:
    """手動で進めるフレームクロック"""
    return FrameClock()


@pytest.fixture
def origin_pose() -> Pose:
    return Pose(np.zeros(3))
