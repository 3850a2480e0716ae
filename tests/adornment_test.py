#!/usr/bin/env python3
"""
デバッグ表示キャッシュのテストスイート

セグメントごとのプリミティブ割り当て、形状変更、アイドル回収と再利用を検証します。
"""

import unittest

import numpy as np

# テスト対象モジュール
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shapecast.data_types import CastData, CastType, Intersection, Pose, SegmentObserver
from shapecast.debug import (
    AdornmentCache, BoxAdornment, LineAdornment, SphereAdornment,
    get_adornment_cache, reset_adornment_cache
)
from shapecast.hitbox.segment import Segment
from shapecast.scene import SceneNode


class TestAdornmentCache(unittest.TestCase):
    """プリミティブのプール"""

    def setUp(self):
        self.cache = AdornmentCache(idle_timeout=1.0)
        self.node = SceneNode("DmgPoint")
        self.segment = Segment(self.node, CastData())

    def place(self, position, result=None):
        self.segment.position = np.array(position, dtype=float)
        self.segment.raycast_result = result

    def test_observer_protocol(self):
        """AdornmentCache は SegmentObserver を満たす"""
        self.assertIsInstance(self.cache, SegmentObserver)

    def test_hidden_before_first_position(self):
        """位置記録前は非表示"""
        adornment = self.cache.observe(self.segment, 0.0)
        self.assertIsInstance(adornment, LineAdornment)
        self.assertFalse(adornment.visible)

    def test_line_follows_segment(self):
        """レイの線は前回位置から現在位置まで"""
        self.place((0.0, 0.0, 0.0))
        self.cache.observe(self.segment, 0.0)
        self.place((0.0, 0.0, 2.0))
        adornment = self.cache.observe(self.segment, 0.1)

        np.testing.assert_allclose(adornment.start, [0.0, 0.0, 0.0])
        np.testing.assert_allclose(adornment.end, [0.0, 0.0, 2.0])
        self.assertEqual(adornment.color, self.cache.miss_color)

    def test_hit_color(self):
        """ヒット時はヒット色で交差点まで描く"""
        hit = Intersection("Wall", np.array([0.0, 0.0, 1.0]), np.array([0.0, 0.0, -1.0]), 1.0)
        self.place((0.0, 0.0, 2.0), hit)
        adornment = self.cache.observe(self.segment, 0.0)

        self.assertEqual(adornment.color, self.cache.hit_color)
        np.testing.assert_allclose(adornment.end, [0.0, 0.0, 1.0])

    def test_shape_change_replaces_primitive(self):
        """キャスト種別が変わるとプリミティブが差し替わる"""
        self.place((0.0, 0.0, 0.0))
        line = self.cache.observe(self.segment, 0.0)

        self.segment.cast_data = CastData(CastType.SPHERECAST, radius=0.3)
        sphere = self.cache.observe(self.segment, 0.1)
        self.assertIsInstance(sphere, SphereAdornment)
        self.assertEqual(sphere.radius, 0.3)
        self.assertFalse(line.visible)
        self.assertEqual(self.cache.free_count(CastType.RAYCAST), 1)

        self.segment.cast_data = CastData(CastType.BLOCKCAST, size=(1.0, 2.0, 3.0))
        self.segment.last_pose = Pose(np.array([0.0, 1.0, 0.0]))
        box = self.cache.observe(self.segment, 0.2)
        self.assertIsInstance(box, BoxAdornment)
        np.testing.assert_allclose(box.pose.position, [0.0, 1.0, 0.0])
        np.testing.assert_allclose(box.size, [1.0, 2.0, 3.0])

    def test_recycle_idle(self):
        """アイドル時間を超えたプリミティブは回収・再利用される"""
        self.place((0.0, 0.0, 0.0))
        first = self.cache.observe(self.segment, 0.0)

        self.assertEqual(self.cache.recycle(0.5), 0)
        self.assertEqual(self.cache.recycle(1.5), 1)
        self.assertFalse(first.visible)
        self.assertEqual(len(self.cache), 0)

        other = Segment(SceneNode("Other"), CastData())
        other.position = np.zeros(3)
        reused = self.cache.observe(other, 2.0)
        self.assertIs(reused, first)
        self.assertEqual(self.cache.get_stats()['reused'], 1)

    def test_release_and_clear(self):
        """release / clear で非表示になりプールに戻る"""
        self.place((0.0, 0.0, 0.0))
        self.cache.observe(self.segment, 0.0)
        self.cache.release(self.segment.key)
        self.cache.release(self.segment.key)
        self.assertIsNone(self.cache.get(self.segment.key))

        self.cache.observe(self.segment, 0.1)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.cache.free_count(), 1)

    def test_singleton(self):
        """共通キャッシュは初回取得時に生成される"""
        first = get_adornment_cache()
        self.assertIs(first, get_adornment_cache())
        reset_adornment_cache()
        self.assertIsNot(first, get_adornment_cache())


if __name__ == '__main__':
    unittest.main()
