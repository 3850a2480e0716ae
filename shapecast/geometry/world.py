#!/usr/bin/env python3
"""
メッシュワールド（キャストプロバイダ実装）

三角形メッシュで構成されたワールドパーツに対して、レイ・球・ボックスの
キャストを行い、最も近いブロッキングヒットを返します。

- Raycast: BVH で候補を絞り込んだ Möller–Trumbore 判定
- Spherecast / Blockcast: 候補三角形ごとに外接箱が重なり得る時間区間を求め、
  その区間内だけを形状サイズの半分刻みでサンプリングして最初の接触区間を二分探索で詰める。
  サンプル間隔は移動量に依存しないため、1フレームの移動が大きくても薄い面をすり抜けない。
  開始時点で既に重なっているジオメトリは無視する。
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .index import BoundingBox, SpatialIndex
from .intersect import (
    facing_normal,
    obb_triangle_overlap,
    ray_triangles_intersect,
    sphere_triangle_contact,
    swept_aabb_window,
    swept_bounds,
    closest_point_on_triangle,
)
from .mesh import TriangleMesh, create_box_mesh, create_plane_mesh
from ..config import get_config
from ..constants import DISTANCE_EPSILON
from ..data_types import ArrayLike, Intersection, Pose, RaycastParams, as_vector3
from .. import get_logger

logger = get_logger(__name__)


@dataclass(eq=False)
class WorldPart:
    """ワールド内の衝突対象パーツ"""
    name: str
    mesh: TriangleMesh
    material: str = "Plastic"
    tags: Dict[str, Any] = field(default_factory=dict)
    can_query: bool = True

    def __post_init__(self):
        world_config = get_config().world
        self.index = SpatialIndex(
            self.mesh,
            max_triangles_per_leaf=world_config.bvh_max_triangles_per_leaf,
            max_depth=world_config.bvh_max_depth
        )
        self._triangles = self.mesh.get_triangle_vertices()

    def __repr__(self) -> str:
        return f"WorldPart({self.name!r})"

    @classmethod
    def box(
        cls,
        name: str,
        pose: Pose,
        size: ArrayLike,
        **kwargs: Any
    ) -> 'WorldPart':
        """直方体パーツを作成"""
        return cls(name, create_box_mesh(size, pose), **kwargs)

    @classmethod
    def plane(
        cls,
        name: str,
        center: ArrayLike,
        normal: ArrayLike,
        half_extent: float = 1.0,
        **kwargs: Any
    ) -> 'WorldPart':
        """正方形平面パーツを作成"""
        return cls(name, create_plane_mesh(center, normal, half_extent), **kwargs)

    @property
    def triangles(self) -> np.ndarray:
        return self._triangles


# 候補三角形: (パーツ, 三角形インデックス)
_Candidate = Tuple[WorldPart, int]


class MeshWorld:
    """三角形メッシュワールドに対するキャストプロバイダ"""

    def __init__(self, sweep_refine_iterations: Optional[int] = None):
        """
        初期化

        Args:
            sweep_refine_iterations: 初回接触の二分探索回数（Noneの場合は設定ファイルから取得）
        """
        world_config = get_config().world
        self.sweep_refine_iterations = (sweep_refine_iterations if sweep_refine_iterations is not None
                                        else world_config.sweep_refine_iterations)
        self._parts: List[WorldPart] = []

        self.stats = {
            'casts': 0,
            'hits': 0,
            'total_cast_time_ms': 0.0,
        }

    # ------------------------------------------------------------------
    # パーツ管理
    # ------------------------------------------------------------------
    @property
    def parts(self) -> List[WorldPart]:
        return list(self._parts)

    def add_part(self, part: WorldPart) -> WorldPart:
        if part not in self._parts:
            self._parts.append(part)
            logger.debug(f"World part added: {part.name} ({part.mesh.num_triangles} triangles)")
        return part

    def remove_part(self, part: WorldPart) -> None:
        if part in self._parts:
            self._parts.remove(part)
            logger.debug(f"World part removed: {part.name}")

    def get_part(self, name: str) -> Optional[WorldPart]:
        for part in self._parts:
            if part.name == name:
                return part
        return None

    def clear(self) -> None:
        self._parts.clear()

    def _queryable_parts(self, params: Optional[RaycastParams]) -> List[WorldPart]:
        return [
            part for part in self._parts
            if part.can_query and part.mesh.num_triangles > 0
            and (params is None or params.allows(part))
        ]

    # ------------------------------------------------------------------
    # キャスト
    # ------------------------------------------------------------------
    def raycast(
        self,
        origin: ArrayLike,
        direction: ArrayLike,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """
        レイキャスト

        Args:
            origin: レイ原点
            direction: レイ方向（長さが最大距離）
            params: フィルタ設定

        Returns:
            最も近い交差、なければ None
        """
        start_time = time.perf_counter()
        origin = as_vector3(origin, "origin")
        direction = as_vector3(direction, "direction")
        try:
            length = float(np.linalg.norm(direction))
            if length < DISTANCE_EPSILON:
                return None

            best: Optional[Tuple[float, WorldPart, int]] = None
            for part in self._queryable_parts(params):
                candidates = part.index.query_ray(origin, direction, 1.0)
                if not candidates:
                    continue
                ts = ray_triangles_intersect(origin, direction, part.triangles[candidates])
                k = int(np.argmin(ts))
                if np.isfinite(ts[k]) and (best is None or ts[k] < best[0]):
                    best = (float(ts[k]), part, candidates[k])

            if best is None:
                return None

            t, part, tri_idx = best
            return self._make_intersection(
                part,
                position=origin + direction * t,
                normal=facing_normal(part.mesh.triangle_normals[tri_idx], direction),
                distance=t * length
            )
        finally:
            self._record_cast(start_time)

    def spherecast(
        self,
        origin: ArrayLike,
        radius: float,
        direction: ArrayLike,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """
        球スイープキャスト

        Args:
            origin: 球の開始中心
            radius: 球の半径
            direction: 移動ベクトル
            params: フィルタ設定

        Returns:
            最初に接触した交差、なければ None
        """
        origin = as_vector3(origin, "origin")
        direction = as_vector3(direction, "direction")
        radius = float(radius)
        if radius <= DISTANCE_EPSILON:
            return self.raycast(origin, direction, params)

        start_time = time.perf_counter()
        try:
            def overlap(center: np.ndarray, triangle: np.ndarray) -> bool:
                return sphere_triangle_contact(center, radius, triangle) is not None

            return self._sweep(
                origin, direction, np.full(3, radius), 2.0 * radius, overlap, params,
                contact_normal=lambda center, point, tri_normal: self._sphere_normal(center, point, tri_normal, direction)
            )
        finally:
            self._record_cast(start_time)

    def blockcast(
        self,
        pose: Pose,
        size: ArrayLike,
        direction: ArrayLike,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """
        ボックススイープキャスト

        Args:
            pose: ボックス開始姿勢（中心）
            size: ボックスの辺長
            direction: 移動ベクトル
            params: フィルタ設定

        Returns:
            最初に接触した交差、なければ None
        """
        size = as_vector3(size, "size")
        direction = as_vector3(direction, "direction")
        half_extents = size * 0.5
        positive = half_extents[half_extents > DISTANCE_EPSILON]
        if positive.size == 0:
            return self.raycast(pose.position, direction, params)

        start_time = time.perf_counter()
        try:
            axes = pose.axes
            # ワールド AABB 半径
            aabb_half = np.abs(axes) @ half_extents

            def overlap(center: np.ndarray, triangle: np.ndarray) -> bool:
                return obb_triangle_overlap(center, axes, half_extents, triangle)

            return self._sweep(
                pose.position, direction, aabb_half, 2.0 * float(positive.min()), overlap, params,
                contact_normal=lambda center, point, tri_normal: facing_normal(tri_normal, direction)
            )
        finally:
            self._record_cast(start_time)

    # ------------------------------------------------------------------
    # スイープ共通処理
    # ------------------------------------------------------------------
    def _sweep(
        self,
        start: np.ndarray,
        direction: np.ndarray,
        aabb_half: np.ndarray,
        min_extent: float,
        overlap: Callable[[np.ndarray, np.ndarray], bool],
        params: Optional[RaycastParams],
        contact_normal: Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]
    ) -> Optional[Intersection]:
        length = float(np.linalg.norm(direction))
        if length < DISTANCE_EPSILON:
            return None

        lo, hi = swept_bounds(start, direction, aabb_half)
        bounds = BoundingBox(lo, hi)
        windows: List[Tuple[float, float, _Candidate]] = []
        for part in self._queryable_parts(params):
            for tri_idx in part.index.query_box(bounds):
                triangle = part.triangles[tri_idx]
                # 開始時点で重なっているジオメトリは無視
                if overlap(start, triangle):
                    continue
                window = swept_aabb_window(start, direction, aabb_half, triangle)
                if window is not None:
                    windows.append((window[0], window[1], (part, tri_idx)))
        if not windows:
            return None
        windows.sort(key=lambda w: w[0])

        # 形状の最小幅の半分刻み（移動量に依存しない）
        dt = 0.5 * min_extent / length

        t_free = 0.0
        t_hit = None
        hit_set: List[_Candidate] = []
        for interval_start, t in self._sample_times(windows, dt):
            center = start + direction * t
            hit_set = [c for t0, t1, c in windows
                       if t0 <= t <= t1 and overlap(center, c[0].triangles[c[1]])]
            if hit_set:
                # 区間の開始より前はどの候補とも重ならない
                t_free = max(t_free, interval_start)
                t_hit = t
                break
            t_free = t
        if t_hit is None:
            return None

        # 初回接触区間を二分探索
        for _ in range(self.sweep_refine_iterations):
            t_mid = 0.5 * (t_free + t_hit)
            center = start + direction * t_mid
            mid_set = [c for c in hit_set if overlap(center, c[0].triangles[c[1]])]
            if mid_set:
                t_hit = t_mid
                hit_set = mid_set
            else:
                t_free = t_mid

        center = start + direction * t_hit
        best_point = None
        best_candidate = None
        best_dist = np.inf
        for part, tri_idx in hit_set:
            tri = part.triangles[tri_idx]
            point = closest_point_on_triangle(center, tri[0], tri[1], tri[2])
            dist = float(np.linalg.norm(center - point))
            if dist < best_dist:
                best_dist, best_point, best_candidate = dist, point, (part, tri_idx)

        part, tri_idx = best_candidate
        normal = contact_normal(center, best_point, part.mesh.triangle_normals[tri_idx])
        return self._make_intersection(part, position=best_point, normal=normal, distance=t_hit * length)

    @staticmethod
    def _sample_times(
        windows: List[Tuple[float, float, _Candidate]],
        dt: float
    ) -> Iterator[Tuple[float, float]]:
        """t0 昇順の時間区間の和集合を dt 刻みで走査し (区間開始, t) を返す（各区間の終端を含む）"""
        merged: List[List[float]] = []
        for t0, t1, _ in windows:
            if merged and t0 <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], t1)
            else:
                merged.append([t0, t1])

        for t0, t1 in merged:
            count = max(1, int(math.ceil((t1 - t0) / dt)))
            for i in range(count + 1):
                yield t0, t0 + (t1 - t0) * i / count

    @staticmethod
    def _sphere_normal(
        center: np.ndarray,
        point: np.ndarray,
        tri_normal: np.ndarray,
        direction: np.ndarray
    ) -> np.ndarray:
        offset = center - point
        length = np.linalg.norm(offset)
        if length < DISTANCE_EPSILON:
            return facing_normal(tri_normal, direction)
        return offset / length

    def _make_intersection(
        self,
        part: WorldPart,
        position: np.ndarray,
        normal: np.ndarray,
        distance: float
    ) -> Intersection:
        self.stats['hits'] += 1
        return Intersection(
            instance=part,
            position=np.asarray(position, dtype=float),
            normal=np.asarray(normal, dtype=float),
            distance=float(distance),
            material=part.material,
            tags=part.tags
        )

    def _record_cast(self, start_time: float) -> None:
        self.stats['casts'] += 1
        self.stats['total_cast_time_ms'] += (time.perf_counter() - start_time) * 1000

    def get_stats(self) -> dict:
        """統計取得"""
        return self.stats.copy()


# デフォルトワールド（シングルトン）
class _DefaultWorldSingleton:
    """デフォルトワールドインスタンス管理"""
    _instance: Optional[MeshWorld] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MeshWorld:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = MeshWorld()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """インスタンスをリセット（テスト用）"""
        with cls._lock:
            cls._instance = None


def get_default_world() -> MeshWorld:
    """デフォルトワールドを取得（パーツが無ければ常にヒットなし）"""
    return _DefaultWorldSingleton.get_instance()


def reset_default_world() -> None:
    """デフォルトワールドをリセット（テスト用）"""
    _DefaultWorldSingleton.reset_instance()
