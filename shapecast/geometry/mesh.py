#!/usr/bin/env python3
"""
三角形メッシュ

ワールドジオメトリを表現する三角形メッシュと、ボックス・平面などの
基本形状メッシュの生成関数を提供します。
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..data_types import ArrayLike, Pose, as_vector3


@dataclass(eq=False)
class TriangleMesh:
    """三角形メッシュデータ構造"""
    vertices: np.ndarray       # 頂点座標 (N, 3) - (x, y, z)
    triangles: np.ndarray      # 三角形インデックス (M, 3)
    triangle_normals: Optional[np.ndarray] = None  # 三角形法線 (M, 3)

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=float).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)
        if self.triangle_normals is None and self.num_triangles > 0:
            self.triangle_normals = self._calculate_triangle_normals()

    @property
    def num_vertices(self) -> int:
        """頂点数を取得"""
        return len(self.vertices)

    @property
    def num_triangles(self) -> int:
        """三角形数を取得"""
        return len(self.triangles)

    def get_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """バウンディングボックスを取得"""
        min_bounds = np.min(self.vertices, axis=0)
        max_bounds = np.max(self.vertices, axis=0)
        return min_bounds, max_bounds

    def get_triangle_vertices(self) -> np.ndarray:
        """三角形ごとの頂点座標 (M, 3, 3)"""
        return self.vertices[self.triangles]

    def get_triangle_centers(self) -> np.ndarray:
        """三角形の重心を計算"""
        return self.get_triangle_vertices().mean(axis=1)

    def get_triangle_areas(self) -> np.ndarray:
        """三角形の面積を計算"""
        tri = self.get_triangle_vertices()
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        # 3D外積の長さは2倍の面積
        return np.linalg.norm(cross, axis=1) / 2.0

    def transformed(self, pose: Pose) -> 'TriangleMesh':
        """姿勢を適用したメッシュ"""
        return TriangleMesh(
            vertices=pose.transform_point(self.vertices) if self.num_vertices else self.vertices.copy(),
            triangles=self.triangles.copy()
        )

    def _calculate_triangle_normals(self) -> np.ndarray:
        tri = self.get_triangle_vertices()
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        lengths = np.linalg.norm(cross, axis=1, keepdims=True)
        # 退化三角形は法線ゼロ
        return np.divide(cross, lengths, out=np.zeros_like(cross), where=lengths > 0)


# 単位立方体（中心原点、各辺長1）、法線は外向き
_BOX_CORNERS = np.array([
    [-0.5, -0.5, -0.5],
    [0.5, -0.5, -0.5],
    [0.5, 0.5, -0.5],
    [-0.5, 0.5, -0.5],
    [-0.5, -0.5, 0.5],
    [0.5, -0.5, 0.5],
    [0.5, 0.5, 0.5],
    [-0.5, 0.5, 0.5],
])

_BOX_TRIANGLES = np.array([
    [0, 2, 1], [0, 3, 2],   # -Z
    [4, 5, 6], [4, 6, 7],   # +Z
    [0, 1, 5], [0, 5, 4],   # -Y
    [3, 7, 6], [3, 6, 2],   # +Y
    [0, 4, 7], [0, 7, 3],   # -X
    [1, 2, 6], [1, 6, 5],   # +X
])


def create_box_mesh(size: ArrayLike, pose: Optional[Pose] = None) -> TriangleMesh:
    """
    直方体メッシュを作成

    Args:
        size: 各軸の辺長
        pose: 中心の姿勢（None なら原点）

    Returns:
        12三角形のメッシュ
    """
    vertices = _BOX_CORNERS * as_vector3(size, "size")
    if pose is not None:
        vertices = pose.transform_point(vertices)
    return TriangleMesh(vertices=vertices, triangles=_BOX_TRIANGLES.copy())


def create_plane_mesh(
    center: ArrayLike,
    normal: ArrayLike,
    half_extent: float = 1.0
) -> TriangleMesh:
    """
    正方形平面メッシュを作成（2三角形）

    Args:
        center: 中心座標
        normal: 法線方向
        half_extent: 中心から辺までの距離

    Returns:
        法線側を表とするメッシュ
    """
    center = as_vector3(center, "center")
    n = as_vector3(normal, "normal")
    length = np.linalg.norm(n)
    if length < 1e-12:
        raise ValueError("Plane normal must be non-zero")
    n = n / length

    # 法線に直交する基底を作る
    helper = np.array([1.0, 0.0, 0.0]) if abs(n[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(n, helper)
    u /= np.linalg.norm(u)
    v = np.cross(n, u)

    vertices = np.array([
        center + (-u - v) * half_extent,
        center + (u - v) * half_extent,
        center + (u + v) * half_extent,
        center + (-u + v) * half_extent,
    ])
    mesh = TriangleMesh(vertices=vertices, triangles=np.array([[0, 1, 2], [0, 2, 3]]))
    # 頂点順序に依存せず指定法線を採用
    mesh.triangle_normals = np.tile(n, (2, 1))
    return mesh
