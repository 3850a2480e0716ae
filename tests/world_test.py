#!/usr/bin/env python3
"""
メッシュワールド（キャストプロバイダ）のテストスイート

BVH 検索、レイ・球・箱のキャスト、フィルタ、交差判定カーネルを検証します。
"""

import unittest

import numpy as np

# テスト対象モジュール
import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shapecast.data_types import CastProvider, FilterType, Pose, RaycastParams
from shapecast.geometry import (
    BoundingBox, MeshWorld, WorldPart, build_bvh_index, create_box_mesh, get_default_world
)
from shapecast.geometry.intersect import (
    closest_point_on_triangle, obb_triangle_overlap, ray_triangles_intersect, sphere_triangle_contact,
    swept_aabb_window
)


def make_grid_mesh_world(count: int = 10) -> MeshWorld:
    """小さな箱を格子状に並べたワールド"""
    world = MeshWorld()
    for i in range(count):
        for j in range(count):
            world.add_part(WorldPart.box(
                f"Box_{i}_{j}",
                Pose(np.array([i * 2.0, j * 2.0, 0.0])),
                (1.0, 1.0, 1.0)
            ))
    return world


class TestIntersectionKernels(unittest.TestCase):
    """交差判定カーネル"""

    def setUp(self):
        self.triangle = np.array([
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
        ])

    def test_ray_triangle(self):
        """レイと三角形の交差パラメータ"""
        ts = ray_triangles_intersect(
            np.array([0.2, 0.2, 1.0]), np.array([0.0, 0.0, -2.0]), self.triangle[np.newaxis]
        )
        self.assertAlmostEqual(ts[0], 0.5)

        misses = ray_triangles_intersect(
            np.array([0.8, 0.8, 1.0]), np.array([0.0, 0.0, -2.0]), self.triangle[np.newaxis]
        )
        self.assertTrue(np.isinf(misses[0]))

    def test_ray_stops_short(self):
        """レイ長より先の三角形とは交差しない"""
        ts = ray_triangles_intersect(
            np.array([0.2, 0.2, 1.0]), np.array([0.0, 0.0, -0.5]), self.triangle[np.newaxis]
        )
        self.assertTrue(np.isinf(ts[0]))

    def test_closest_point_regions(self):
        """頂点・辺・面の各領域で最近接点を求める"""
        a, b, c = self.triangle
        np.testing.assert_allclose(closest_point_on_triangle(np.array([-1.0, -1.0, 0.0]), a, b, c), a)
        np.testing.assert_allclose(closest_point_on_triangle(np.array([0.5, -1.0, 0.0]), a, b, c), [0.5, 0.0, 0.0])
        np.testing.assert_allclose(closest_point_on_triangle(np.array([0.2, 0.2, 3.0]), a, b, c), [0.2, 0.2, 0.0])
        np.testing.assert_allclose(closest_point_on_triangle(np.array([1.0, 1.0, 0.0]), a, b, c), [0.5, 0.5, 0.0])

    def test_sphere_contact(self):
        """球と三角形の接触"""
        self.assertIsNotNone(sphere_triangle_contact(np.array([0.2, 0.2, 0.4]), 0.5, self.triangle))
        self.assertIsNone(sphere_triangle_contact(np.array([0.2, 0.2, 0.6]), 0.5, self.triangle))

    def test_obb_overlap(self):
        """回転した箱と三角形の分離軸判定"""
        axes = Pose.from_euler((0.0, 0.0, 0.0), (0.0, 0.0, 45.0)).axes
        half = np.array([0.5, 0.5, 0.5])
        self.assertTrue(obb_triangle_overlap(np.array([0.2, 0.2, 0.4]), axes, half, self.triangle))
        self.assertFalse(obb_triangle_overlap(np.array([0.2, 0.2, 0.6]), axes, half, self.triangle))
        self.assertFalse(obb_triangle_overlap(np.array([2.0, 2.0, 0.0]), axes, half, self.triangle))


class TestSpatialIndex(unittest.TestCase):
    """BVH 空間インデックス"""

    def test_query_box_matches_brute_force(self):
        """箱検索の結果が全探索と一致する"""
        mesh = create_box_mesh((1.0, 1.0, 1.0))
        index = build_bvh_index(mesh, max_triangles_per_leaf=2)
        query = BoundingBox(np.array([0.4, -1.0, -1.0]), np.array([1.0, 1.0, 1.0]))

        tri = mesh.get_triangle_vertices()
        expected = {
            i for i in range(mesh.num_triangles)
            if np.all(tri[i].min(axis=0) <= query.max_point) and np.all(tri[i].max(axis=0) >= query.min_point)
        }
        self.assertEqual(set(index.query_box(query)), expected)
        self.assertGreater(index.stats['num_nodes'], 1)

    def test_query_ray_prunes(self):
        """レイ検索は外れた領域を除外する"""
        mesh = create_box_mesh((1.0, 1.0, 1.0))
        index = build_bvh_index(mesh)
        self.assertEqual(index.query_ray(np.array([5.0, 5.0, 5.0]), np.array([1.0, 0.0, 0.0])), [])
        self.assertGreater(len(index.query_ray(np.array([-2.0, 0.0, 0.0]), np.array([4.0, 0.0, 0.0]))), 0)


class TestMeshWorldCasts(unittest.TestCase):
    """キャスト"""

    def setUp(self):
        self.world = MeshWorld()
        self.near = self.world.add_part(WorldPart.box("Near", Pose(np.array([0.0, 0.0, 3.0])), (2.0, 2.0, 1.0)))
        self.far = self.world.add_part(WorldPart.box("Far", Pose(np.array([0.0, 0.0, 6.0])), (2.0, 2.0, 1.0)))

    def test_protocol(self):
        """MeshWorld は CastProvider を満たす"""
        self.assertIsInstance(self.world, CastProvider)

    def test_raycast_nearest_hit(self):
        """最も近いブロッキングヒットを返す"""
        result = self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 10.0))

        self.assertIs(result.instance, self.near)
        self.assertAlmostEqual(result.distance, 2.5)
        np.testing.assert_allclose(result.normal, [0.0, 0.0, -1.0], atol=1e-9)
        self.assertEqual(result.material, "Plastic")

    def test_raycast_miss(self):
        """レイ長が足りなければヒットなし"""
        self.assertIsNone(self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 2.0)))
        self.assertIsNone(self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 0.0)))

    def test_exclude_filter(self):
        """除外フィルタで手前のパーツを無視する"""
        params = RaycastParams(FilterType.EXCLUDE, [self.near])
        result = self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 10.0), params)
        self.assertIs(result.instance, self.far)

    def test_include_filter(self):
        """包含フィルタでは指定パーツのみ対象"""
        params = RaycastParams(FilterType.INCLUDE, ["Far"])
        result = self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 10.0), params)
        self.assertIs(result.instance, self.far)

    def test_can_query_false(self):
        """can_query=False のパーツは対象外"""
        self.near.can_query = False
        result = self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 10.0))
        self.assertIs(result.instance, self.far)

    def test_spherecast(self):
        """球は半径ぶん手前で接触する"""
        result = self.world.spherecast((0.1, 0.2, 0.0), 0.5, (0.0, 0.0, 10.0))

        self.assertIs(result.instance, self.near)
        self.assertAlmostEqual(result.distance, 2.0, places=2)
        self.assertAlmostEqual(result.position[2], 2.5, places=6)

    def test_spherecast_ignores_initial_overlap(self):
        """開始時点で重なっているジオメトリは無視する"""
        result = self.world.spherecast((0.1, 0.2, 2.4), 0.5, (0.0, 0.0, 0.05))
        self.assertIsNone(result)

    def test_zero_radius_sphere_is_ray(self):
        """半径0の球はレイとして扱う"""
        result = self.world.spherecast((0.1, 0.2, 0.0), 0.0, (0.0, 0.0, 10.0))
        self.assertAlmostEqual(result.distance, 2.5)

    def test_blockcast(self):
        """箱の前面が接触した位置で止まる"""
        pose = Pose(np.array([0.0, 0.0, 0.0]))
        result = self.world.blockcast(pose, (0.5, 0.5, 1.0), (0.0, 0.0, 10.0))

        self.assertIs(result.instance, self.near)
        self.assertAlmostEqual(result.distance, 2.0, places=2)
        np.testing.assert_allclose(result.normal, [0.0, 0.0, -1.0], atol=1e-9)

    def test_blockcast_catches_wide_box(self):
        """レイでは外れても箱の幅で当たる"""
        pose = Pose(np.array([1.6, 0.0, 0.0]))
        self.assertIsNone(self.world.raycast(pose.position, (0.0, 0.0, 10.0)))
        result = self.world.blockcast(pose, (1.6, 1.0, 0.2), (0.0, 0.0, 10.0))
        self.assertIs(result.instance, self.near)

    def test_fast_sweeps_do_not_tunnel_through_thin_plane(self):
        """1回で形状の数百倍動いても薄い面をすり抜けない"""
        world = MeshWorld()
        plane = world.add_part(WorldPart.plane("Thin", (0.3, 0.45, 50.7), (0.0, 0.0, 1.0), half_extent=5.0))

        sphere = world.spherecast((0.0, 0.0, 0.0), 0.1, (0.0, 0.0, 100.0))
        self.assertIsNotNone(sphere)
        self.assertIs(sphere.instance, plane)
        self.assertAlmostEqual(sphere.distance, 50.6, places=2)

        block = world.blockcast(Pose(np.zeros(3)), (0.2, 0.2, 0.2), (0.0, 0.0, 100.0))
        self.assertIsNotNone(block)
        self.assertIs(block.instance, plane)
        self.assertAlmostEqual(block.distance, 50.6, places=2)

    def test_sweep_hits_nearest_of_many_windows(self):
        """離れた複数の面では最初の面で止まる"""
        world = MeshWorld()
        world.add_part(WorldPart.plane("Far", (0.3, 0.45, 80.0), (0.0, 0.0, 1.0), half_extent=5.0))
        near = world.add_part(WorldPart.plane("Near", (0.3, 0.45, 20.0), (0.0, 0.0, 1.0), half_extent=5.0))

        result = world.spherecast((0.0, 0.0, 0.0), 0.1, (0.0, 0.0, 100.0))
        self.assertIs(result.instance, near)
        self.assertAlmostEqual(result.distance, 19.9, places=2)

    def test_sweep_window_kernel(self):
        """外接箱が重なり得る時間区間"""
        triangle = np.array([[-1.0, -1.0, 5.0], [1.0, -1.0, 5.0], [0.0, 1.0, 5.0]])
        window = swept_aabb_window(np.zeros(3), np.array([0.0, 0.0, 10.0]), np.full(3, 0.5), triangle)
        self.assertAlmostEqual(window[0], 0.45, places=6)
        self.assertAlmostEqual(window[1], 0.55, places=6)

        self.assertIsNone(swept_aabb_window(
            np.array([5.0, 0.0, 0.0]), np.array([0.0, 0.0, 10.0]), np.full(3, 0.5), triangle
        ))

    def test_stats(self):
        """キャスト統計"""
        self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, 10.0))
        self.world.raycast((0.1, 0.2, 0.0), (0.0, 0.0, -10.0))

        stats = self.world.get_stats()
        self.assertEqual(stats['casts'], 2)
        self.assertEqual(stats['hits'], 1)

    def test_grid_world(self):
        """多数パーツのワールドでも最も近いヒットを返す"""
        world = make_grid_mesh_world(5)
        result = world.raycast((-3.0, 4.1, 0.0), (20.0, 0.0, 0.0))

        self.assertEqual(result.instance.name, "Box_0_2")
        self.assertAlmostEqual(result.distance, 2.5)


class TestDefaultWorld(unittest.TestCase):
    """デフォルトワールド"""

    def test_empty_world_never_hits(self):
        """パーツのないデフォルトワールドは常にヒットなし"""
        world = get_default_world()
        self.assertIs(world, get_default_world())
        self.assertIsNone(world.raycast((0.0, 0.0, 0.0), (0.0, 0.0, 100.0)))


if __name__ == '__main__':
    unittest.main()
