#!/usr/bin/env python3
"""
デバッグ表示用アドーンメントキャッシュ

セグメントごとにキャスト形状（線・球・箱）のプリミティブを割り当て、
一定時間使われなかったものは非表示にして形状別のフリープールへ戻します。
プロセス内で1つのキャッシュを共有します。
"""

import threading
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

import numpy as np

from ..config import get_config
from ..data_types import CastType, Pose
from .. import get_logger

logger = get_logger(__name__)

Color = Tuple[float, float, float]


@dataclass(eq=False)
class Adornment:
    """表示プリミティブの共通状態"""
    visible: bool = False
    last_use: float = 0.0
    color: Color = (0.0, 1.0, 0.0)

    shape: ClassVar[CastType]

    def hide(self) -> None:
        self.visible = False

    def to_open3d(self) -> Any:
        """Open3D ジオメトリへ変換（viz エクストラが必要）"""
        import open3d as o3d
        geometry = self._build_open3d(o3d)
        geometry.paint_uniform_color(list(self.color))
        return geometry

    def _build_open3d(self, o3d: Any) -> Any:
        raise NotImplementedError


@dataclass(eq=False)
class LineAdornment(Adornment):
    """レイキャストの掃引線"""
    start: np.ndarray = field(default_factory=lambda: np.zeros(3))
    end: np.ndarray = field(default_factory=lambda: np.zeros(3))

    shape: ClassVar[CastType] = CastType.RAYCAST

    def _build_open3d(self, o3d: Any) -> Any:
        return o3d.geometry.LineSet(
            points=o3d.utility.Vector3dVector(np.vstack([self.start, self.end])),
            lines=o3d.utility.Vector2iVector([[0, 1]])
        )


@dataclass(eq=False)
class SphereAdornment(Adornment):
    """スフィアキャストの球"""
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    radius: float = 0.0

    shape: ClassVar[CastType] = CastType.SPHERECAST

    def _build_open3d(self, o3d: Any) -> Any:
        sphere = o3d.geometry.TriangleMesh.create_sphere(radius=max(self.radius, 1e-3))
        sphere.translate(self.center)
        return sphere


@dataclass(eq=False)
class BoxAdornment(Adornment):
    """ブロックキャストの箱"""
    pose: Pose = field(default_factory=Pose.identity)
    size: np.ndarray = field(default_factory=lambda: np.zeros(3))

    shape: ClassVar[CastType] = CastType.BLOCKCAST

    def _build_open3d(self, o3d: Any) -> Any:
        extent = np.maximum(self.size, 1e-3)
        box = o3d.geometry.TriangleMesh.create_box(width=extent[0], height=extent[1], depth=extent[2])
        box.translate(-extent * 0.5)
        box.rotate(self.pose.axes, center=(0.0, 0.0, 0.0))
        box.translate(self.pose.position)
        return box


_SHAPES: Dict[CastType, Type[Adornment]] = {
    CastType.RAYCAST: LineAdornment,
    CastType.SPHERECAST: SphereAdornment,
    CastType.BLOCKCAST: BoxAdornment,
}


class AdornmentCache:
    """セグメントキー -> 表示プリミティブのプール"""

    def __init__(self, idle_timeout: Optional[float] = None):
        """
        初期化

        Args:
            idle_timeout: 未使用プリミティブを回収するまでの秒数（Noneの場合は設定ファイルから取得）
        """
        debug_config = get_config().debug
        self.idle_timeout = idle_timeout if idle_timeout is not None else debug_config.adornment_idle_timeout
        self.hit_color: Color = tuple(debug_config.hit_color)
        self.miss_color: Color = tuple(debug_config.miss_color)

        self._active: Dict[Any, Adornment] = {}
        self._free: Dict[CastType, List[Adornment]] = {shape: [] for shape in _SHAPES}
        self._last_recycle = 0.0

        self.stats = {
            'created': 0,
            'reused': 0,
            'recycled': 0,
        }

    def __len__(self) -> int:
        return len(self._active)

    def get(self, key: Any) -> Optional[Adornment]:
        return self._active.get(key)

    def active_adornments(self) -> Dict[Any, Adornment]:
        return dict(self._active)

    def free_count(self, shape: Optional[CastType] = None) -> int:
        if shape is not None:
            return len(self._free[shape])
        return sum(len(pool) for pool in self._free.values())

    def observe(self, segment: Any, now: float) -> Adornment:
        """
        セグメントの最新状態をプリミティブに反映

        Args:
            segment: 観測するセグメント
            now: 現在時刻（秒）

        Returns:
            セグメントに割り当てられたプリミティブ
        """
        shape = segment.cast_data.cast_type
        adornment = self._active.get(segment.key)
        if adornment is not None and adornment.shape is not shape:
            self.release(segment.key)
            adornment = None
        if adornment is None:
            adornment = self._acquire(shape)
            self._active[segment.key] = adornment

        adornment.last_use = now
        if segment.position is None:
            adornment.visible = False
        else:
            self._apply(adornment, segment)
            adornment.visible = True
            adornment.color = self.hit_color if segment.raycast_result is not None else self.miss_color

        if now - self._last_recycle >= self.idle_timeout:
            self.recycle(now)
        return adornment

    def _acquire(self, shape: CastType) -> Adornment:
        pool = self._free[shape]
        if pool:
            self.stats['reused'] += 1
            return pool.pop()
        self.stats['created'] += 1
        return _SHAPES[shape]()

    def _apply(self, adornment: Adornment, segment: Any) -> None:
        position = segment.position
        result = segment.raycast_result
        if isinstance(adornment, LineAdornment):
            start = adornment.end if adornment.visible else position
            adornment.start = np.array(start, dtype=float)
            adornment.end = np.array(result.position if result is not None else position, dtype=float)
        elif isinstance(adornment, SphereAdornment):
            adornment.center = np.array(position, dtype=float)
            adornment.radius = segment.cast_data.radius
        elif isinstance(adornment, BoxAdornment):
            adornment.pose = segment.last_pose.copy() if segment.last_pose is not None else Pose(position)
            adornment.size = segment.cast_data.size.copy()

    def recycle(self, now: float, idle_timeout: Optional[float] = None) -> int:
        """
        idle_timeout 秒以上使われていないプリミティブを回収

        Returns:
            回収した数
        """
        timeout = idle_timeout if idle_timeout is not None else self.idle_timeout
        self._last_recycle = now
        stale = [key for key, adornment in self._active.items() if now - adornment.last_use > timeout]
        for key in stale:
            self.release(key)
        if stale:
            self.stats['recycled'] += len(stale)
            logger.debug(f"Recycled {len(stale)} idle adornments")
        return len(stale)

    def release(self, key: Any) -> None:
        """セグメントのプリミティブを非表示にしてプールへ戻す"""
        adornment = self._active.pop(key, None)
        if adornment is None:
            return
        adornment.hide()
        self._free[adornment.shape].append(adornment)

    def clear(self) -> None:
        for key in list(self._active):
            self.release(key)

    def to_open3d(self) -> List[Any]:
        """表示中プリミティブを Open3D ジオメトリのリストへ変換"""
        return [adornment.to_open3d() for adornment in self._active.values() if adornment.visible]

    def get_stats(self) -> dict:
        """統計取得"""
        stats = self.stats.copy()
        stats['active'] = len(self._active)
        stats['free'] = self.free_count()
        return stats


# 共通キャッシュ（シングルトン）
class _AdornmentCacheSingleton:
    """共通アドーンメントキャッシュ管理"""
    _instance: Optional[AdornmentCache] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> AdornmentCache:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = AdornmentCache()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """インスタンスをリセット（テスト用）"""
        with cls._lock:
            cls._instance = None


def get_adornment_cache() -> AdornmentCache:
    """共通アドーンメントキャッシュを取得（初回呼び出し時に生成）"""
    return _AdornmentCacheSingleton.get_instance()


def reset_adornment_cache() -> None:
    """共通アドーンメントキャッシュをリセット（テスト用）"""
    _AdornmentCacheSingleton.reset_instance()
