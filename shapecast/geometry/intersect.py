#!/usr/bin/env python3
"""
交差判定カーネル

レイ-三角形、球-三角形、ボックス(OBB)-三角形の判定を提供します。
スイープキャストはこれらの静的判定をサンプリングと二分探索で組み合わせて構成します。
"""

from typing import Optional, Tuple

import numpy as np

from ..constants import NUMERICAL_TOLERANCE


def ray_triangles_intersect(
    origin: np.ndarray,
    direction: np.ndarray,
    triangles: np.ndarray
) -> np.ndarray:
    """
    レイと複数三角形の交差パラメータを計算（Möller–Trumbore、両面）

    Args:
        origin: レイ原点 (3,)
        direction: レイ方向 (3,)、長さ込み
        triangles: 三角形頂点 (M, 3, 3)

    Returns:
        交差パラメータ t (M,)。0 < t <= 1 の交差のみ有効で、非交差は inf
        （原点が面上にある場合は交差としない）
    """
    if len(triangles) == 0:
        return np.empty(0)

    v0 = triangles[:, 0]
    edge1 = triangles[:, 1] - v0
    edge2 = triangles[:, 2] - v0

    pvec = np.cross(direction, edge2)
    det = np.einsum('ij,ij->i', edge1, pvec)
    valid = np.abs(det) > NUMERICAL_TOLERANCE
    inv_det = np.divide(1.0, det, out=np.zeros_like(det), where=valid)

    tvec = origin - v0
    u = np.einsum('ij,ij->i', tvec, pvec) * inv_det
    qvec = np.cross(tvec, edge1)
    v = (qvec @ direction) * inv_det
    t = np.einsum('ij,ij->i', edge2, qvec) * inv_det

    eps = NUMERICAL_TOLERANCE
    hit = valid & (u >= -eps) & (v >= -eps) & (u + v <= 1.0 + eps) & (t > eps) & (t <= 1.0)
    return np.where(hit, t, np.inf)


def closest_point_on_triangle(
    point: np.ndarray,
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray
) -> np.ndarray:
    """
    点から三角形への最近接点を計算（ボロノイ領域による場合分け）

    Returns:
        三角形上の最近接点
    """
    ab = b - a
    ac = c - a
    ap = point - a
    d1 = np.dot(ab, ap)
    d2 = np.dot(ac, ap)
    if d1 <= 0.0 and d2 <= 0.0:
        return a

    bp = point - b
    d3 = np.dot(ab, bp)
    d4 = np.dot(ac, bp)
    if d3 >= 0.0 and d4 <= d3:
        return b

    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        return a + ab * (d1 / (d1 - d3))

    cp = point - c
    d5 = np.dot(ab, cp)
    d6 = np.dot(ac, cp)
    if d6 >= 0.0 and d5 <= d6:
        return c

    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        return a + ac * (d2 / (d2 - d6))

    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        return b + (c - b) * ((d4 - d3) / ((d4 - d3) + (d5 - d6)))

    # 面内部
    denom = va + vb + vc
    if abs(denom) < NUMERICAL_TOLERANCE:
        # 退化三角形
        candidates = (a, b, c)
        return min(candidates, key=lambda q: float(np.dot(point - q, point - q)))
    v = vb / denom
    w = vc / denom
    return a + ab * v + ac * w


def sphere_triangle_contact(
    center: np.ndarray,
    radius: float,
    triangle: np.ndarray
) -> Optional[np.ndarray]:
    """
    球と三角形の接触判定

    Args:
        center: 球の中心
        radius: 球の半径
        triangle: 三角形頂点 (3, 3)

    Returns:
        接触している場合は三角形上の最近接点、そうでなければ None
    """
    closest = closest_point_on_triangle(center, triangle[0], triangle[1], triangle[2])
    offset = center - closest
    if np.dot(offset, offset) <= radius * radius:
        return closest
    return None


def obb_triangle_overlap(
    center: np.ndarray,
    axes: np.ndarray,
    half_extents: np.ndarray,
    triangle: np.ndarray
) -> bool:
    """
    有向ボックス(OBB)と三角形の重なり判定（分離軸定理、13軸）

    Args:
        center: ボックス中心
        axes: ボックスのローカル軸を列に並べた 3x3 行列
        half_extents: 各軸の半分の辺長
        triangle: 三角形頂点 (3, 3)

    Returns:
        重なっていれば True
    """
    # ボックス座標系へ変換
    local = (triangle - center) @ axes
    e = half_extents

    # ボックスの3軸
    if np.any(local.min(axis=0) > e) or np.any(local.max(axis=0) < -e):
        return False

    edges = (local[1] - local[0], local[2] - local[1], local[0] - local[2])

    # 三角形の法線
    normal = np.cross(edges[0], edges[1])
    if np.dot(normal, normal) > NUMERICAL_TOLERANCE:
        if not _overlaps_on_axis(local, e, normal):
            return False

    # ボックス軸 x 三角形辺 の9軸
    unit_axes = np.eye(3)
    for edge in edges:
        for box_axis in unit_axes:
            axis = np.cross(box_axis, edge)
            if np.dot(axis, axis) <= NUMERICAL_TOLERANCE:
                continue
            if not _overlaps_on_axis(local, e, axis):
                return False
    return True


def _overlaps_on_axis(local_triangle: np.ndarray, half_extents: np.ndarray, axis: np.ndarray) -> bool:
    projections = local_triangle @ axis
    radius = float(np.dot(half_extents, np.abs(axis)))
    return not (projections.min() > radius or projections.max() < -radius)


def triangle_normal(triangle: np.ndarray) -> np.ndarray:
    """三角形の単位法線（退化時はゼロ）"""
    normal = np.cross(triangle[1] - triangle[0], triangle[2] - triangle[0])
    length = np.linalg.norm(normal)
    if length < NUMERICAL_TOLERANCE:
        return np.zeros(3)
    return normal / length


def facing_normal(normal: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """キャスト方向に向かい合う側の法線を返す"""
    if np.dot(normal, direction) > 0:
        return -normal
    return normal


def swept_bounds(
    start: np.ndarray,
    direction: np.ndarray,
    half_extent: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """始点から direction 分動く形状（AABB半径 half_extent）の外接箱"""
    end = start + direction
    return (
        np.minimum(start, end) - half_extent,
        np.maximum(start, end) + half_extent
    )


def swept_aabb_window(
    start: np.ndarray,
    direction: np.ndarray,
    half_extent: np.ndarray,
    triangle: np.ndarray,
    eps: float = NUMERICAL_TOLERANCE
) -> Optional[Tuple[float, float]]:
    """
    形状の外接箱が三角形の外接箱と重なり得る時間区間

    三角形 AABB を half_extent だけ膨らませた箱に対して中心の軌跡をスラブ判定する。
    形状は中心 ± half_extent に収まるため、区間外で接触することはない。

    Returns:
        (t0, t1)  0 <= t0 <= t1 <= 1、重ならなければ None
    """
    lo = triangle.min(axis=0) - half_extent - eps
    hi = triangle.max(axis=0) + half_extent + eps
    t0, t1 = 0.0, 1.0
    for axis in range(3):
        d = direction[axis]
        if abs(d) < eps:
            if start[axis] < lo[axis] or start[axis] > hi[axis]:
                return None
            continue
        a = (lo[axis] - start[axis]) / d
        b = (hi[axis] - start[axis]) / d
        if a > b:
            a, b = b, a
        t0 = max(t0, a)
        t1 = min(t1, b)
        if t0 > t1:
            return None
    return t0, t1
