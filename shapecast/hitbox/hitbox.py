#!/usr/bin/env python3
"""
ヒットボックスコントローラー

取り付けたノード配下のエミッションポイントをセグメントとして追跡し、
アクティブ中はフレームごとに前回位置から現在位置までをキャストします。

1ティックの処理順（固定）:
1. スロットル判定（resolution による頭打ち）
2. キャストパスなら全セグメントを登録順に更新
3. on_update コールバック（毎ティック）
4. キャストパスのヒットごとに hit_set へ記録し on_hit コールバック
5. visualizer 有効時はオブザーバーへ通知

コールバック内で停止・再開始・破棄された場合、そのティックの残りは打ち切ります。
"""

import functools
import math
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from ..clock import Connection, FrameClock, TimerHandle, get_frame_clock
from ..config import HitboxConfig, get_config
from ..constants import TIME_EPSILON
from ..data_types import (
    CastData,
    CastProvider,
    HitboxDestroyedError,
    Intersection,
    RaycastParams,
    SegmentObserver,
)
from ..debug.adornments import get_adornment_cache
from ..geometry.world import get_default_world
from ..scene import SceneNode, discover_emission_points
from .callbacks import CallbackList
from .registry import SegmentRegistry
from .segment import Segment
from .. import get_logger

logger = get_logger(__name__)

SegmentRef = Union[SceneNode, Any]


class HitboxState(Enum):
    """ヒットボックス状態"""
    INACTIVE = auto()
    ACTIVE = auto()


class Hitbox:
    """連続衝突判定ヒットボックス"""

    def __init__(
        self,
        instance: SceneNode,
        raycast_params: Optional[RaycastParams] = None,
        *,
        provider: Optional[CastProvider] = None,
        clock: Optional[FrameClock] = None,
        config: Optional[HitboxConfig] = None
    ):
        """
        初期化

        Args:
            instance: ヒットボックスを取り付けるノード
            raycast_params: キャスト対象のフィルタ設定
            provider: キャストプロバイダ（Noneの場合はデフォルトワールド）
            clock: ティックソース（Noneの場合は共通フレームクロック）
            config: ヒットボックス設定（Noneの場合は設定ファイルから取得）

        Raises:
            CastDataError: 設定のデフォルトキャスト設定が不正な場合
        """
        hitbox_config = config if config is not None else get_config().hitbox

        self.instance = instance
        self.raycast_params = raycast_params if raycast_params is not None else RaycastParams()
        self.provider: CastProvider = provider if provider is not None else get_default_world()
        self.clock = clock if clock is not None else get_frame_clock()

        self.resolution = float(hitbox_config.default_resolution)
        self.filter_parts_hit = bool(hitbox_config.filter_parts_hit)
        self.point_marker = hitbox_config.point_marker
        self.stationary_probe_length = float(hitbox_config.stationary_probe_length)
        self._cast_data = hitbox_config.build_cast_data()

        self.attributes: Dict[str, Any] = {}
        self.raycast_result: Optional[Intersection] = None
        self.observer: Optional[SegmentObserver] = None

        self.before_start_callbacks = CallbackList("before_start")
        self.on_update_callbacks = CallbackList("on_update")
        self.on_hit_callbacks = CallbackList("on_hit")
        self.on_stopped_callbacks = CallbackList("on_stopped")

        self._state = HitboxState.INACTIVE
        self._destroyed = False
        self._generation = 0
        self._connection: Optional[Connection] = None
        self._timer: Optional[TimerHandle] = None
        self._elapsed = 0.0
        self._hit_set: Set[Any] = set()

        self._registry = SegmentRegistry(self._create_segment)

        self.stats = {
            'ticks': 0,
            'casting_passes': 0,
            'hits': 0,
            'activations': 0,
        }

        self.reconcile()

    def __repr__(self) -> str:
        return (f"Hitbox({self.instance.name!r}, state={self._state.name}, "
                f"segments={len(self._registry)})")

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------
    @property
    def state(self) -> HitboxState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is HitboxState.ACTIVE

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def cast_data(self) -> CastData:
        return self._cast_data

    @property
    def hit_set(self) -> Set[Any]:
        """現在のアクティブ期間でヒットしたインスタンス"""
        return set(self._hit_set)

    @property
    def visualizer(self) -> bool:
        return self.observer is not None

    @visualizer.setter
    def visualizer(self, enabled: bool) -> None:
        self._check_alive()
        if enabled:
            if self.observer is None:
                self.observer = get_adornment_cache()
        else:
            self._release_observed(self._registry.keys())
            self.observer = None

    def _check_alive(self) -> None:
        if self._destroyed:
            raise HitboxDestroyedError(f"Hitbox for {self.instance.name!r} has been destroyed")

    # ------------------------------------------------------------------
    # セグメント管理
    # ------------------------------------------------------------------
    def _create_segment(self, node: SceneNode) -> Segment:
        return Segment(node, self._cast_data)

    @staticmethod
    def _key_of(ref: SegmentRef) -> Any:
        return ref.node_id if isinstance(ref, SceneNode) else ref

    def reconcile(self) -> 'Hitbox':
        """
        エミッションポイントを再探索してセグメントを追加・削除

        既存セグメントの状態は保持され、アクティブ中でも呼び出せる。
        """
        self._check_alive()
        discovered = discover_emission_points(self.instance, self.point_marker)
        added, removed = self._registry.reconcile(discovered, root=self.instance)
        self._release_observed([segment.key for segment in removed])
        if added or removed:
            logger.debug(f"Hitbox {self.instance.name!r}: {len(added)} segments added, "
                         f"{len(removed)} removed")
        return self

    def add_segment(self, node: SceneNode) -> Segment:
        """
        ノードをセグメントとして追加（登録済みなら既存セグメントを返す）

        マーカー属性がなくても reconcile で削除されない。
        ノードが消滅するか取り付け先の子孫でなくなった時点の reconcile で削除される。
        """
        self._check_alive()
        return self._registry.add(node, explicit=True)

    def remove_segment(self, ref: SegmentRef) -> 'Hitbox':
        """セグメントを削除（ノードまたは安定IDで指定）"""
        self._check_alive()
        segment = self._registry.remove(self._key_of(ref))
        if segment is not None:
            self._release_observed([segment.key])
        return self

    def get_segment(self, ref: SegmentRef) -> Optional[Segment]:
        self._check_alive()
        return self._registry.get(self._key_of(ref))

    def get_all_segments(self) -> Dict[Any, Segment]:
        self._check_alive()
        return self._registry.all()

    def _release_observed(self, keys: List[Any]) -> None:
        if self.observer is None:
            return
        for key in keys:
            self.observer.release(key)

    # ------------------------------------------------------------------
    # 設定
    # ------------------------------------------------------------------
    def set_resolution(self, resolution: float) -> 'Hitbox':
        """
        1秒あたりの最大キャスト回数を設定（次のティックから有効）

        Raises:
            ValueError: 正の有限値でない場合
        """
        self._check_alive()
        resolution = float(resolution)
        if not math.isfinite(resolution) or resolution <= 0:
            raise ValueError(f"Resolution must be a positive number, got {resolution}")
        self.resolution = resolution
        return self

    def set_cast_data(self, cast_data: Union[CastData, Dict[str, Any]]) -> 'Hitbox':
        """
        共通キャスト設定を差し替え（個別設定を持つセグメントには影響しない）

        Raises:
            CastDataError: 不正なキャスト設定
        """
        self._check_alive()
        self._cast_data = CastData.coerce(cast_data)
        for segment in self._registry.all().values():
            segment.set_default_cast_data(self._cast_data)
        logger.debug(f"Hitbox {self.instance.name!r} cast type set to {self._cast_data.cast_type.value}")
        return self

    # ------------------------------------------------------------------
    # コールバック登録
    # ------------------------------------------------------------------
    def before_start(self, callback: Callable[[], Any]) -> 'Hitbox':
        self._check_alive()
        self.before_start_callbacks.add(callback)
        return self

    def on_update(self, callback: Callable[[float], Any]) -> 'Hitbox':
        self._check_alive()
        self.on_update_callbacks.add(callback)
        return self

    def on_hit(self, callback: Callable[[Intersection, Segment], Any]) -> 'Hitbox':
        self._check_alive()
        self.on_hit_callbacks.add(callback)
        return self

    def on_stopped(self, callback: Callable[[bool], Any]) -> 'Hitbox':
        """停止時コールバックを登録（True を返すと全コールバックのクリアを要求）"""
        self._check_alive()
        self.on_stopped_callbacks.add(callback)
        return self

    def _clear_callbacks(self) -> None:
        self.before_start_callbacks.clear()
        self.on_update_callbacks.clear()
        self.on_hit_callbacks.clear()
        self.on_stopped_callbacks.clear()

    # ------------------------------------------------------------------
    # ライフサイクル
    # ------------------------------------------------------------------
    def hit_start(
        self,
        timer: Optional[float] = None,
        override_params: Optional[RaycastParams] = None
    ) -> 'Hitbox':
        """
        判定を開始（アクティブ中なら何もしない）

        Args:
            timer: 指定秒後に自動停止
            override_params: 以降使用するフィルタ設定

        Raises:
            ValueError: timer が負の場合
        """
        self._check_alive()
        if self.active:
            return self
        if timer is not None and timer < 0:
            raise ValueError(f"Timer must be non-negative, got {timer}")

        if override_params is not None:
            self.raycast_params = override_params

        self.before_start_callbacks.fire(should_continue=lambda: not self._destroyed)
        # before_start 内で破棄・開始された場合
        if self._destroyed or self.active:
            return self

        for segment in self._registry.all().values():
            segment.reset()
        self._hit_set.clear()
        self.raycast_result = None
        self._elapsed = 0.0

        self._generation += 1
        self._state = HitboxState.ACTIVE
        self._connection = self.clock.connect(self._on_tick)
        if timer is not None:
            self._timer = self.clock.delay(timer, functools.partial(self._on_timer, self._generation))
        self.stats['activations'] += 1

        logger.info(f"Hitbox {self.instance.name!r} started "
                    f"({len(self._registry)} segments, resolution={self.resolution:g})")
        return self

    def _on_timer(self, generation: int) -> None:
        if generation == self._generation and self.active:
            self.hit_stop()

    def _deactivate(self) -> None:
        self._generation += 1
        self._state = HitboxState.INACTIVE
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._connection is not None:
            self._connection.disconnect()
            self._connection = None

    def hit_stop(self, clear_callbacks: bool = False) -> 'Hitbox':
        """
        判定を停止（非アクティブなら何もしない）

        Args:
            clear_callbacks: 停止後に全コールバックをクリアするか
        """
        self._check_alive()
        if not self.active:
            return self

        self._deactivate()
        logger.info(f"Hitbox {self.instance.name!r} stopped")

        results = self.on_stopped_callbacks.fire(clear_callbacks, should_continue=lambda: not self._destroyed)
        if not self._destroyed and (clear_callbacks or any(result is True for result in results)):
            self._clear_callbacks()
        return self

    def destroy(self) -> None:
        """
        ヒットボックスを破棄（on_stopped は呼ばない）

        Raises:
            HitboxDestroyedError: 既に破棄済みの場合
        """
        self._check_alive()
        self._deactivate()
        self._release_observed(self._registry.keys())
        self._registry.clear()
        self._clear_callbacks()
        self.attributes.clear()
        self._hit_set.clear()
        self.raycast_result = None
        self.observer = None
        self._destroyed = True
        logger.info(f"Hitbox {self.instance.name!r} destroyed")

    # ------------------------------------------------------------------
    # ティック処理
    # ------------------------------------------------------------------
    def _on_tick(self, dt: float) -> None:
        if not self.active:
            return
        generation = self._generation

        def alive() -> bool:
            return self._generation == generation and not self._destroyed

        self.stats['ticks'] += 1
        self._elapsed += dt
        casting = self._elapsed + TIME_EPSILON >= max(1.0 / self.resolution, dt)

        hits: List[Tuple[Segment, Intersection]] = []
        if casting:
            self._elapsed = 0.0
            self.stats['casting_passes'] += 1
            self.raycast_result = None
            # 同じパス内の先行セグメントのヒットもフィルタ対象
            seen = set(self._hit_set)
            for segment in self._registry.all().values():
                result = segment.update(
                    self.provider,
                    self.raycast_params,
                    hit_set=seen,
                    filter_enabled=self.filter_parts_hit,
                    stationary_length=self.stationary_probe_length
                )
                if result is not None:
                    hits.append((segment, result))
                    seen.add(result.instance)
                    self.raycast_result = result
            if hits:
                logger.debug(f"Hitbox {self.instance.name!r}: casting pass produced {len(hits)} hits")

        self.on_update_callbacks.fire(dt, should_continue=alive)

        for segment, result in hits:
            if not alive():
                return
            self._hit_set.add(result.instance)
            self.stats['hits'] += 1
            self.on_hit_callbacks.fire(result, segment, should_continue=alive)

        if casting and self.observer is not None and alive():
            now = self.clock.time
            for segment in self._registry.all().values():
                try:
                    self.observer.observe(segment, now)
                except Exception as e:
                    logger.error(f"Error in segment observer: {e}", exc_info=True)

    def get_stats(self) -> dict:
        """統計取得"""
        stats = self.stats.copy()
        stats['segments'] = len(self._registry)
        stats['active'] = self.active
        return stats
