#!/usr/bin/env python3
"""
共通型定義

キャスト設定・姿勢・交差結果など、ヒットボックス全体で使用される型を一元管理し、
モジュール間の循環依存を解消します。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable
import numpy as np
from scipy.spatial.transform import Rotation

from . import get_logger

logger = get_logger(__name__)

# 型エイリアス
ArrayLike = Union[np.ndarray, List, Tuple]


# =============================================================================
# 例外
# =============================================================================

class CastDataError(ValueError):
    """不正なキャスト設定（未対応のキャスト種別、負の半径など）"""


class HitboxDestroyedError(RuntimeError):
    """破棄済みヒットボックスに対する操作"""


# =============================================================================
# 姿勢
# =============================================================================

def as_vector3(value: ArrayLike, name: str = "vector") -> np.ndarray:
    """3要素の float 配列に変換"""
    array = np.asarray(value, dtype=float)
    if array.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {array.shape}")
    return array


@dataclass
class Pose:
    """剛体変換（位置 + 回転）"""
    position: np.ndarray
    rotation: Rotation = field(default_factory=Rotation.identity)

    def __post_init__(self):
        self.position = as_vector3(self.position, "position")

    @classmethod
    def identity(cls) -> 'Pose':
        """恒等変換"""
        return cls(np.zeros(3), Rotation.identity())

    @classmethod
    def from_euler(
        cls,
        position: ArrayLike,
        angles: ArrayLike,
        seq: str = "xyz",
        degrees: bool = True
    ) -> 'Pose':
        """オイラー角から姿勢を作成"""
        return cls(np.asarray(position, dtype=float), Rotation.from_euler(seq, angles, degrees=degrees))

    @classmethod
    def from_matrix(cls, position: ArrayLike, matrix: ArrayLike) -> 'Pose':
        """回転行列から姿勢を作成"""
        return cls(np.asarray(position, dtype=float), Rotation.from_matrix(np.asarray(matrix, dtype=float)))

    def __mul__(self, other: 'Pose') -> 'Pose':
        """姿勢の合成（self の座標系で other を解釈）"""
        return Pose(
            self.position + self.rotation.apply(other.position),
            self.rotation * other.rotation
        )

    def transform_point(self, point: ArrayLike) -> np.ndarray:
        """ローカル座標の点をワールド座標へ変換"""
        return self.position + self.rotation.apply(np.asarray(point, dtype=float))

    def inverse(self) -> 'Pose':
        """逆変換"""
        inv_rotation = self.rotation.inv()
        return Pose(-inv_rotation.apply(self.position), inv_rotation)

    def translated(self, offset: ArrayLike) -> 'Pose':
        """ワールド座標で平行移動した姿勢"""
        return Pose(self.position + np.asarray(offset, dtype=float), self.rotation)

    @property
    def axes(self) -> np.ndarray:
        """ローカル軸（列ベクトル）を並べた 3x3 行列"""
        return self.rotation.as_matrix()

    @property
    def look_vector(self) -> np.ndarray:
        """前方向（ローカル -Z 軸）"""
        return -self.axes[:, 2]

    def copy(self) -> 'Pose':
        return Pose(self.position.copy(), Rotation.from_quat(self.rotation.as_quat()))


# =============================================================================
# キャスト設定
# =============================================================================

class CastType(Enum):
    """キャスト種別の列挙"""
    RAYCAST = "Raycast"
    BLOCKCAST = "Blockcast"
    SPHERECAST = "Spherecast"

    @classmethod
    def parse(cls, value: Union['CastType', str]) -> 'CastType':
        """
        キャスト種別を解釈

        Args:
            value: CastType もしくは "Raycast" / "raycast" / "RAYCAST" などの文字列

        Returns:
            CastType

        Raises:
            CastDataError: 未対応のキャスト種別
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if lowered in (member.value.lower(), member.name.lower()):
                    return member
        raise CastDataError(f"Unsupported cast type: {value!r}")


@dataclass
class CastData:
    """
    キャスト設定

    cast_type で有効になるパラメータが決まる:
    Blockcast は cframe / size、Spherecast は radius、Raycast はどちらも使わない。
    """
    cast_type: CastType = CastType.RAYCAST
    cframe: Pose = field(default_factory=Pose.identity)
    size: np.ndarray = field(default_factory=lambda: np.zeros(3))
    radius: float = 0.0

    def __post_init__(self):
        self.cast_type = CastType.parse(self.cast_type)
        if not isinstance(self.cframe, Pose):
            raise CastDataError(f"cframe must be a Pose, got {type(self.cframe).__name__}")
        try:
            self.size = as_vector3(self.size, "size")
            self.radius = float(self.radius)
        except (TypeError, ValueError) as e:
            raise CastDataError(str(e)) from e
        if np.any(self.size < 0) or not np.all(np.isfinite(self.size)):
            raise CastDataError(f"Box size must be finite and non-negative, got {self.size}")
        if self.radius < 0 or not np.isfinite(self.radius):
            raise CastDataError(f"Sphere radius must be finite and non-negative, got {self.radius}")
        if self.cast_type is CastType.SPHERECAST and self.radius == 0:
            logger.debug("Spherecast with zero radius degenerates to a raycast")
        elif self.cast_type is CastType.BLOCKCAST and np.prod(self.size) == 0:
            logger.debug("Blockcast with zero-volume box degenerates to a thin sweep")

    def copy(self) -> 'CastData':
        return CastData(
            cast_type=self.cast_type,
            cframe=self.cframe.copy(),
            size=self.size.copy(),
            radius=self.radius
        )

    @classmethod
    def coerce(cls, value: Union['CastData', Dict[str, Any]]) -> 'CastData':
        """CastData もしくは辞書から検証済みの独立したコピーを作成"""
        if isinstance(value, cls):
            return value.copy()
        if isinstance(value, dict):
            return cls.from_dict(value)
        raise CastDataError(f"Expected CastData or mapping, got {type(value).__name__}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CastData':
        """
        辞書（YAML 設定）からキャスト設定を作成

        Keys:
            cast_type, radius, size, position (cframe 位置), rotation (cframe オイラー角[deg])
        """
        if not isinstance(data, dict):
            raise CastDataError(f"Cast data must be a mapping, got {type(data).__name__}")
        unknown = set(data) - {"cast_type", "radius", "size", "position", "rotation"}
        if unknown:
            raise CastDataError(f"Unknown cast data keys: {sorted(unknown)}")
        try:
            cframe = Pose.from_euler(
                data.get("position", (0.0, 0.0, 0.0)),
                data.get("rotation", (0.0, 0.0, 0.0))
            )
        except ValueError as e:
            raise CastDataError(f"Invalid cast data cframe: {e}") from e
        return cls(
            cast_type=data.get("cast_type", CastType.RAYCAST),
            cframe=cframe,
            size=data.get("size", (0.0, 0.0, 0.0)),
            radius=data.get("radius", 0.0)
        )

    def to_dict(self) -> Dict[str, Any]:
        """辞書（YAML 設定）へ変換"""
        return {
            "cast_type": self.cast_type.value,
            "radius": self.radius,
            "size": [float(v) for v in self.size],
            "position": [float(v) for v in self.cframe.position],
            "rotation": [float(v) for v in self.cframe.rotation.as_euler("xyz", degrees=True)],
        }


# =============================================================================
# キャスト結果・パラメータ
# =============================================================================

@dataclass
class Intersection:
    """キャストの交差結果（最も近いブロッキングヒット）"""
    instance: Any
    position: np.ndarray
    normal: np.ndarray
    distance: float
    material: str = "Plastic"
    tags: Dict[str, Any] = field(default_factory=dict)


class FilterType(Enum):
    """フィルタ種別の列挙"""
    EXCLUDE = "exclude"
    INCLUDE = "include"


@dataclass
class RaycastParams:
    """キャスト対象のフィルタ設定"""
    filter_type: FilterType = FilterType.EXCLUDE
    filter_instances: List[Any] = field(default_factory=list)

    def add_to_filter(self, *instances: Any) -> None:
        """フィルタ対象を追加"""
        for instance in instances:
            if instance not in self.filter_instances:
                self.filter_instances.append(instance)

    def _matches(self, part: Any) -> bool:
        name = getattr(part, "name", None)
        for entry in self.filter_instances:
            if entry is part:
                return True
            if isinstance(entry, str) and entry == name:
                return True
        return False

    def allows(self, part: Any) -> bool:
        """part がキャスト対象になるか"""
        if self.filter_type == FilterType.INCLUDE:
            return self._matches(part)
        return not self._matches(part)


# =============================================================================
# プロトコル定義（インターフェース）
# =============================================================================

@runtime_checkable
class CastProvider(Protocol):
    """ワールドに対するキャストを提供するプロトコル"""

    def raycast(
        self,
        origin: np.ndarray,
        direction: np.ndarray,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """origin から direction（長さ込み）のレイキャスト"""
        ...

    def spherecast(
        self,
        origin: np.ndarray,
        radius: float,
        direction: np.ndarray,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """半径 radius の球を direction 分スイープ"""
        ...

    def blockcast(
        self,
        pose: Pose,
        size: np.ndarray,
        direction: np.ndarray,
        params: Optional[RaycastParams] = None
    ) -> Optional[Intersection]:
        """pose / size のボックスを direction 分スイープ"""
        ...


@runtime_checkable
class SegmentObserver(Protocol):
    """セグメント状態の観測者（デバッグ表示など）のプロトコル"""

    def observe(self, segment: Any, now: float) -> Any:
        """セグメントの最新状態を反映"""
        ...

    def release(self, key: Any) -> None:
        """セグメントに紐づく資源を解放"""
        ...
