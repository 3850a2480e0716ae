#!/usr/bin/env python3
"""
空間インデックス

ワールドパーツの三角形を BVH（Bounding Volume Hierarchy）で管理し、
レイ・スイープ体積に対する候補三角形の検索を高速化します。
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .mesh import TriangleMesh
from ..constants import MAX_TRIANGLES_PER_LEAF, SPATIAL_INDEX_MAX_DEPTH


@dataclass(eq=False)
class BoundingBox:
    """軸並行バウンディングボックス"""
    min_point: np.ndarray      # 最小点 (3,)
    max_point: np.ndarray      # 最大点 (3,)

    @property
    def center(self) -> np.ndarray:
        """中心点を取得"""
        return (self.min_point + self.max_point) * 0.5

    @property
    def size(self) -> np.ndarray:
        """サイズを取得"""
        return self.max_point - self.min_point

    def contains_point(self, point: np.ndarray) -> bool:
        """点が含まれるかチェック"""
        return bool(np.all(point >= self.min_point) and np.all(point <= self.max_point))

    def intersects_box(self, other: 'BoundingBox') -> bool:
        """他のバウンディングボックスと交差するかチェック"""
        return bool(np.all(self.min_point <= other.max_point) and np.all(self.max_point >= other.min_point))

    def expand(self, margin: float) -> 'BoundingBox':
        """マージンを追加してボックスを拡張"""
        return BoundingBox(
            min_point=self.min_point - margin,
            max_point=self.max_point + margin
        )

    @staticmethod
    def from_points(points: np.ndarray) -> 'BoundingBox':
        """点群からバウンディングボックスを作成"""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        return BoundingBox(np.min(points, axis=0), np.max(points, axis=0))

    @staticmethod
    def union(box1: 'BoundingBox', box2: 'BoundingBox') -> 'BoundingBox':
        """2つのボックスの和集合"""
        return BoundingBox(
            np.minimum(box1.min_point, box2.min_point),
            np.maximum(box1.max_point, box2.max_point)
        )


@dataclass(eq=False)
class BVHNode:
    """BVHノード"""
    bounding_box: BoundingBox
    triangle_indices: Optional[List[int]] = None  # リーフノードの三角形インデックス
    left_child: Optional['BVHNode'] = None
    right_child: Optional['BVHNode'] = None

    @property
    def is_leaf(self) -> bool:
        """リーフノードかどうか"""
        return self.triangle_indices is not None


class SpatialIndex:
    """三角形メッシュの BVH 空間インデックス"""

    def __init__(
        self,
        mesh: TriangleMesh,
        max_triangles_per_leaf: int = MAX_TRIANGLES_PER_LEAF,
        max_depth: int = SPATIAL_INDEX_MAX_DEPTH
    ):
        """
        初期化

        Args:
            mesh: 入力メッシュ
            max_triangles_per_leaf: リーフノードあたりの最大三角形数
            max_depth: 最大深度
        """
        self.mesh = mesh
        self.max_triangles_per_leaf = max(1, max_triangles_per_leaf)
        self.max_depth = max_depth

        self.root_node: Optional[BVHNode] = None
        self.triangle_centers: Optional[np.ndarray] = None
        self._tri_min: Optional[np.ndarray] = None
        self._tri_max: Optional[np.ndarray] = None

        self.stats = {
            'build_time_ms': 0.0,
            'num_nodes': 0,
            'max_depth_reached': 0,
            'total_queries': 0,
        }

        self._build_index()

    @property
    def bounds(self) -> Optional[BoundingBox]:
        return self.root_node.bounding_box if self.root_node is not None else None

    def _build_index(self):
        """インデックスを構築"""
        start_time = time.perf_counter()

        if self.mesh.num_triangles == 0:
            return

        tri = self.mesh.get_triangle_vertices()
        self.triangle_centers = tri.mean(axis=1)
        self._tri_min = tri.min(axis=1)
        self._tri_max = tri.max(axis=1)

        self.root_node = self._build_bvh_recursive(list(range(self.mesh.num_triangles)), 0)

        self.stats['build_time_ms'] = (time.perf_counter() - start_time) * 1000

    def _build_bvh_recursive(self, triangle_indices: List[int], depth: int) -> Optional[BVHNode]:
        """BVHを再帰的に構築"""
        if not triangle_indices:
            return None

        self.stats['num_nodes'] += 1
        self.stats['max_depth_reached'] = max(self.stats['max_depth_reached'], depth)

        bbox = self._calculate_bounding_box(triangle_indices)

        if len(triangle_indices) <= self.max_triangles_per_leaf or depth >= self.max_depth:
            return BVHNode(bounding_box=bbox, triangle_indices=triangle_indices)

        # 最長軸の中央値で分割
        split_axis = int(np.argmax(bbox.size))
        centers = self.triangle_centers[triangle_indices, split_axis]
        order = np.argsort(centers, kind="stable")
        half = len(order) // 2
        left = [triangle_indices[i] for i in order[:half]]
        right = [triangle_indices[i] for i in order[half:]]

        return BVHNode(
            bounding_box=bbox,
            left_child=self._build_bvh_recursive(left, depth + 1),
            right_child=self._build_bvh_recursive(right, depth + 1)
        )

    def _calculate_bounding_box(self, triangle_indices: List[int]) -> BoundingBox:
        return BoundingBox(
            self._tri_min[triangle_indices].min(axis=0),
            self._tri_max[triangle_indices].max(axis=0)
        )

    # ------------------------------------------------------------------
    # クエリ
    # ------------------------------------------------------------------
    def query_ray(self, origin: np.ndarray, direction: np.ndarray, max_distance: float = 1.0) -> List[int]:
        """
        レイ（origin + t * direction, 0 <= t <= max_distance）と交差し得る三角形を検索

        Args:
            origin: レイの原点
            direction: レイの方向（正規化不要）
            max_distance: パラメータ t の上限

        Returns:
            候補三角形のインデックスリスト
        """
        self.stats['total_queries'] += 1
        result: List[int] = []
        if self.root_node is None:
            return result

        stack = [self.root_node]
        while stack:
            node = stack.pop()
            if not self._ray_box_intersect(origin, direction, node.bounding_box, max_distance):
                continue
            if node.is_leaf:
                result.extend(node.triangle_indices)
            else:
                if node.left_child is not None:
                    stack.append(node.left_child)
                if node.right_child is not None:
                    stack.append(node.right_child)
        return result

    def query_box(self, bbox: BoundingBox) -> List[int]:
        """
        バウンディングボックスと重なる三角形を検索

        Args:
            bbox: 検索範囲（スイープ体積の外接箱など）

        Returns:
            候補三角形のインデックスリスト
        """
        self.stats['total_queries'] += 1
        result: List[int] = []
        if self.root_node is None:
            return result

        stack = [self.root_node]
        while stack:
            node = stack.pop()
            if not node.bounding_box.intersects_box(bbox):
                continue
            if node.is_leaf:
                for idx in node.triangle_indices:
                    if np.all(self._tri_min[idx] <= bbox.max_point) and np.all(self._tri_max[idx] >= bbox.min_point):
                        result.append(idx)
            else:
                if node.left_child is not None:
                    stack.append(node.left_child)
                if node.right_child is not None:
                    stack.append(node.right_child)
        return result

    @staticmethod
    def _ray_box_intersect(origin: np.ndarray, direction: np.ndarray, bbox: BoundingBox, max_distance: float) -> bool:
        """レイとバウンディングボックスの交差判定（スラブ法）"""
        with np.errstate(divide='ignore', invalid='ignore'):
            inv_dir = np.where(np.abs(direction) > 1e-12, 1.0 / direction, np.inf)
            t1 = (bbox.min_point - origin) * inv_dir
            t2 = (bbox.max_point - origin) * inv_dir

        # 軸に平行なレイはスラブ内にあるかで判定
        parallel = np.abs(direction) <= 1e-12
        if np.any(parallel & ((origin < bbox.min_point) | (origin > bbox.max_point))):
            return False
        t_near = np.where(parallel, -np.inf, np.minimum(t1, t2))
        t_far = np.where(parallel, np.inf, np.maximum(t1, t2))

        t_min = float(np.max(t_near))
        t_max = float(np.min(t_far))
        return t_max >= 0 and t_min <= t_max and t_min <= max_distance

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()


def build_bvh_index(
    mesh: TriangleMesh,
    max_triangles_per_leaf: int = MAX_TRIANGLES_PER_LEAF,
    max_depth: int = SPATIAL_INDEX_MAX_DEPTH
) -> SpatialIndex:
    """
    BVHインデックスを構築（簡単なインターフェース）

    Args:
        mesh: 入力メッシュ
        max_triangles_per_leaf: リーフノードあたりの最大三角形数
        max_depth: 最大深度

    Returns:
        BVH空間インデックス
    """
    return SpatialIndex(mesh=mesh, max_triangles_per_leaf=max_triangles_per_leaf, max_depth=max_depth)
