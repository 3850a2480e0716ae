#!/usr/bin/env python3
"""
設定管理のテストスイート

YAML の読み込み・保存、未知キーの無視、読み込み失敗時のデフォルト、
キャスト設定の検証を検証します。
"""

import logging
import tempfile
import unittest
from pathlib import Path

import numpy as np
import yaml

# テスト対象モジュール
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shapecast import setup_logging
from shapecast.config import (
    ConfigManager, HitboxConfig, ShapecastConfig, get_config, get_config_manager, reset_config
)
from shapecast.data_types import CastData, CastDataError, CastType, Pose


class TestConfigManager(unittest.TestCase):
    """YAML 設定"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "shapecast.yaml"
        self.manager = ConfigManager()

    def tearDown(self):
        self.tmpdir.cleanup()
        reset_config()

    def write_yaml(self, data):
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f)

    def test_defaults(self):
        """デフォルト値"""
        config = ShapecastConfig()
        self.assertEqual(config.hitbox.default_resolution, 60.0)
        self.assertFalse(config.hitbox.filter_parts_hit)
        self.assertEqual(config.hitbox.point_marker, "DmgPoint")
        self.assertEqual(config.hitbox.build_cast_data().cast_type, CastType.RAYCAST)
        self.assertEqual(config.world.sweep_refine_iterations, 12)

    def test_load_sections(self):
        """各セクションの値が反映される"""
        self.write_yaml({
            "hitbox": {"default_resolution": 30, "filter_parts_hit": True,
                       "default_cast_data": {"cast_type": "Spherecast", "radius": 0.25}},
            "world": {"sweep_refine_iterations": 16},
            "debug": {"hit_color": [1.0, 1.0, 0.0]},
            "log_level": "DEBUG",
        })

        config = self.manager.load_config(self.path)

        self.assertEqual(config.hitbox.default_resolution, 30)
        self.assertTrue(config.hitbox.filter_parts_hit)
        self.assertEqual(config.hitbox.build_cast_data().radius, 0.25)
        self.assertEqual(config.world.sweep_refine_iterations, 16)
        self.assertEqual(config.debug.hit_color, (1.0, 1.0, 0.0))
        self.assertEqual(config.log_level, "DEBUG")

    def test_unknown_keys_are_ignored(self):
        """未知のキーは無視される"""
        self.write_yaml({"hitbox": {"nonexistent": 1}, "audio": {"volume": 3}})
        config = self.manager.load_config(self.path)
        self.assertEqual(config.hitbox, HitboxConfig())

    def test_broken_file_falls_back_to_defaults(self):
        """壊れた YAML はデフォルト設定になる"""
        self.path.write_text("hitbox: [unclosed", encoding='utf-8')
        with self.assertLogs("shapecast.config", level="WARNING"):
            config = self.manager.load_config(self.path)
        self.assertEqual(config.hitbox.default_resolution, 60.0)

    def test_invalid_cast_data_raises(self):
        """不正なキャスト設定は CastDataError"""
        self.write_yaml({"hitbox": {"default_cast_data": {"cast_type": "Spherecast", "radius": -1}}})
        with self.assertRaises(CastDataError):
            self.manager.load_config(self.path)

    def test_missing_file_uses_defaults(self):
        """存在しないファイルはデフォルト設定"""
        config = self.manager.load_config(Path(self.tmpdir.name) / "missing.yaml")
        self.assertEqual(config.clock.default_fps, 60.0)

    def test_save_and_reload(self):
        """保存した設定を読み戻せる"""
        config = self.manager.load_config(Path(self.tmpdir.name) / "missing.yaml")
        config.hitbox.default_resolution = 45.0
        config.debug.miss_color = (0.0, 0.0, 1.0)
        self.assertTrue(self.manager.save_config(self.path))

        reloaded = ConfigManager().load_config(self.path)
        self.assertEqual(reloaded.hitbox.default_resolution, 45.0)
        self.assertEqual(reloaded.debug.miss_color, (0.0, 0.0, 1.0))

    def test_save_without_config(self):
        """未読み込みの保存は失敗する"""
        with self.assertLogs("shapecast.config", level="ERROR"):
            self.assertFalse(ConfigManager().save_config(self.path))

    def test_global_manager(self):
        """グローバル設定はリセットで作り直される"""
        manager = get_config_manager()
        self.assertIs(manager, get_config_manager())
        self.assertIsInstance(get_config(), ShapecastConfig)
        reset_config()
        self.assertIsNot(manager, get_config_manager())


class TestLoggingFromConfig(unittest.TestCase):
    """設定ファイルのログ設定"""

    def setUp(self):
        self.root_logger = logging.getLogger()
        self.saved_level = self.root_logger.level
        self.saved_handlers = self.root_logger.handlers[:]

    def tearDown(self):
        for handler in self.root_logger.handlers[:]:
            self.root_logger.removeHandler(handler)
        for handler in self.saved_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.saved_level)
        reset_config()

    def test_level_and_format_follow_config(self):
        """引数省略時は log_level / log_format_style を使う"""
        get_config_manager().set_config(ShapecastConfig(log_level="WARNING", log_format_style="simple"))

        root_logger = setup_logging()

        self.assertEqual(root_logger.level, logging.WARNING)
        self.assertEqual(len(root_logger.handlers), 1)
        self.assertEqual(root_logger.handlers[0].formatter._fmt, "%(levelname)s: %(message)s")

    def test_explicit_level_overrides_config(self):
        """明示したレベルが設定ファイルより優先される"""
        get_config_manager().set_config(ShapecastConfig(log_level="WARNING"))

        self.assertEqual(setup_logging("DEBUG").level, logging.DEBUG)

    def test_invalid_config_level_raises(self):
        """不正なレベル名は ValueError"""
        get_config_manager().set_config(ShapecastConfig(log_level="LOUD"))

        with self.assertRaises(ValueError):
            setup_logging()


class TestCastDataConfig(unittest.TestCase):
    """キャスト設定の辞書変換と検証"""

    def test_round_trip(self):
        """辞書経由で同じ設定に戻る"""
        original = CastData(
            CastType.BLOCKCAST,
            cframe=Pose.from_euler((0.0, 1.0, 0.0), (0.0, 0.0, 30.0)),
            size=(1.0, 2.0, 3.0)
        )
        restored = CastData.from_dict(original.to_dict())

        self.assertEqual(restored.cast_type, CastType.BLOCKCAST)
        np.testing.assert_allclose(restored.size, [1.0, 2.0, 3.0])
        np.testing.assert_allclose(restored.cframe.position, [0.0, 1.0, 0.0])
        np.testing.assert_allclose(restored.cframe.axes, original.cframe.axes, atol=1e-9)

    def test_cast_type_parsing(self):
        """キャスト種別は大文字小文字を区別しない"""
        self.assertEqual(CastType.parse("blockcast"), CastType.BLOCKCAST)
        self.assertEqual(CastType.parse("SPHERECAST"), CastType.SPHERECAST)
        with self.assertRaises(CastDataError):
            CastType.parse("Linecast")

    def test_validation(self):
        """負の半径・サイズや未知のキーは拒否される"""
        with self.assertRaises(CastDataError):
            CastData(CastType.SPHERECAST, radius=-0.1)
        with self.assertRaises(CastDataError):
            CastData(CastType.BLOCKCAST, size=(1.0, -1.0, 1.0))
        with self.assertRaises(CastDataError):
            CastData.from_dict({"cast_type": "Raycast", "length": 3})
        with self.assertRaises(CastDataError):
            CastData(size=(1.0, 1.0))

    def test_degenerate_shapes_are_legal(self):
        """半径0の球・体積0の箱は許可される"""
        self.assertEqual(CastData(CastType.SPHERECAST).radius, 0.0)
        self.assertEqual(CastData(CastType.BLOCKCAST).size.tolist(), [0.0, 0.0, 0.0])


if __name__ == '__main__':
    unittest.main()
