#!/usr/bin/env python3
"""
セグメント（エミッションポイント1つ分の追跡状態）

前フレーム位置から現在位置までをキャストで掃引することで、
フレームレートに依存せず移動経路を隙間なくカバーします。
"""

import dataclasses
import math
import weakref
from typing import Any, Dict, Optional, Set, Union

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from ..constants import BLOCKCAST_MAX_ROTATION_STEP_DEG, DISTANCE_EPSILON
from ..data_types import CastData, CastProvider, CastType, Intersection, Pose, RaycastParams
from ..scene import SceneNode
from .. import get_logger

logger = get_logger(__name__)


class Segment:
    """追跡対象ノード1つ分の掃引状態"""

    def __init__(self, instance: SceneNode, default_cast_data: CastData, key: Any = None):
        """
        初期化

        Args:
            instance: 追跡するノード（弱参照で保持）
            default_cast_data: ヒットボックス共通のキャスト設定
            key: 安定ID（Noneの場合は instance.node_id）
        """
        self.key = key if key is not None else instance.node_id
        self.name = instance.name
        self._instance_ref = weakref.ref(instance)
        self._default_cast_data = default_cast_data
        self._override: Optional[CastData] = None

        self.distance = 0.0
        self.position: Optional[np.ndarray] = None
        self.last_direction: Optional[np.ndarray] = None
        self.raycast_result: Optional[Intersection] = None
        self.last_pose: Optional[Pose] = None

    def __repr__(self) -> str:
        return f"Segment({self.name!r}, key={self.key}, distance={self.distance:.3f})"

    @property
    def instance(self) -> Optional[SceneNode]:
        """追跡ノード（回収済みなら None）"""
        return self._instance_ref()

    # ------------------------------------------------------------------
    # キャスト設定
    # ------------------------------------------------------------------
    @property
    def cast_data(self) -> CastData:
        """有効なキャスト設定（個別設定があればそちら）"""
        return self._override if self._override is not None else self._default_cast_data

    @cast_data.setter
    def cast_data(self, value: Union[CastData, Dict[str, Any]]) -> None:
        self._override = CastData.coerce(value)

    @property
    def has_override(self) -> bool:
        return self._override is not None

    def reset_cast_data(self) -> None:
        """個別設定を解除してヒットボックス共通設定に戻す"""
        self._override = None

    def set_default_cast_data(self, cast_data: CastData) -> None:
        self._default_cast_data = cast_data

    # ------------------------------------------------------------------
    # 更新
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """アクティブ期間開始時の状態に戻す"""
        self.distance = 0.0
        self.position = None
        self.last_direction = None
        self.raycast_result = None
        self.last_pose = None

    def update(
        self,
        provider: CastProvider,
        params: Optional[RaycastParams] = None,
        hit_set: Optional[Set[Any]] = None,
        filter_enabled: bool = False,
        stationary_length: float = 0.0
    ) -> Optional[Intersection]:
        """
        1キャストパス分の更新

        Args:
            provider: キャストプロバイダ
            params: フィルタ設定
            hit_set: 現在のアクティブ期間で既にヒットしたインスタンス
            filter_enabled: hit_set に含まれるヒットを破棄するか
            stationary_length: 静止時に直前方向へ伸ばすプローブ長

        Returns:
            交差結果。初回フレーム・方向なし・ミスは None
        """
        instance = self.instance
        if instance is None:
            logger.debug(f"Segment {self.key} source node is gone, skipping cast")
            self.raycast_result = None
            return None

        cast_data = self.cast_data
        world_pose = instance.world_pose
        current = world_pose.position
        box_pose = world_pose * cast_data.cframe if cast_data.cast_type is CastType.BLOCKCAST else None

        if self.position is None:
            self.position = current.copy()
            self.raycast_result = None
            self.last_pose = box_pose
            return None

        displacement = current - self.position
        moved = float(np.linalg.norm(displacement))
        if moved > DISTANCE_EPSILON:
            self.last_direction = displacement / moved
        self.distance += moved

        probe = None
        if self.last_direction is not None and stationary_length > 0:
            probe = self.last_direction * stationary_length

        result = None
        try:
            result = self._cast(provider, params, cast_data, displacement, moved, probe, box_pose)
        except Exception as e:
            logger.warning(f"Cast failed for segment {self.key} ({self.name}): {e}")
            result = None

        if result is not None and filter_enabled and hit_set is not None and result.instance in hit_set:
            result = None

        self.raycast_result = result
        self.position = current.copy()
        if box_pose is not None:
            self.last_pose = box_pose
        return result

    def _cast(
        self,
        provider: CastProvider,
        params: Optional[RaycastParams],
        cast_data: CastData,
        displacement: np.ndarray,
        moved: float,
        probe: Optional[np.ndarray],
        box_pose: Optional[Pose]
    ) -> Optional[Intersection]:
        if cast_data.cast_type is CastType.BLOCKCAST:
            return self._blockcast(provider, params, cast_data, probe, box_pose)

        if moved > DISTANCE_EPSILON:
            direction = displacement
        elif probe is not None:
            direction = probe
        else:
            return None

        if cast_data.cast_type is CastType.SPHERECAST:
            return provider.spherecast(self.position, cast_data.radius, direction, params)
        return provider.raycast(self.position, direction, params)

    def _blockcast(
        self,
        provider: CastProvider,
        params: Optional[RaycastParams],
        cast_data: CastData,
        probe: Optional[np.ndarray],
        box_pose: Pose
    ) -> Optional[Intersection]:
        """
        前回の箱姿勢から現在の箱姿勢までを掃引

        姿勢の回転が BLOCKCAST_MAX_ROTATION_STEP_DEG を超えて変化した場合は、
        経路を等分して区間ごとに球面線形補間した回転で掃引し、最初のヒットを返す。
        """
        origin_pose = self.last_pose if self.last_pose is not None else box_pose
        direction = box_pose.position - origin_pose.position
        if np.linalg.norm(direction) <= DISTANCE_EPSILON:
            if probe is None:
                return None
            return provider.blockcast(origin_pose, cast_data.size, probe, params)

        angle = (origin_pose.rotation.inv() * box_pose.rotation).magnitude()
        steps = max(1, int(math.ceil(angle / math.radians(BLOCKCAST_MAX_ROTATION_STEP_DEG) - 1e-9)))
        if steps == 1:
            return provider.blockcast(origin_pose, cast_data.size, direction, params)

        keyframes = Rotation.from_quat(np.vstack([origin_pose.rotation.as_quat(), box_pose.rotation.as_quat()]))
        rotations = Slerp([0.0, 1.0], keyframes)(np.linspace(0.0, 1.0, steps + 1))
        step_direction = direction / steps
        step_length = float(np.linalg.norm(step_direction))
        for k in range(steps):
            pose = Pose(origin_pose.position + step_direction * k, rotations[k])
            result = provider.blockcast(pose, cast_data.size, step_direction, params)
            if result is not None:
                return dataclasses.replace(result, distance=k * step_length + result.distance)
        return None
