#!/usr/bin/env python3
"""
フレームクロック

ヒットボックスの毎フレーム更新を駆動するティックソースです。
購読（connect）と遅延タイマー（delay）を提供し、どちらも取り消し可能です。

- step(dt): 手動でフレームを進める（テスト・シミュレーション用）
- run(duration, fps): perf_counter でペーシングする実時間ループ
"""

import heapq
import itertools
import threading
import time
from typing import Callable, List, Optional, Tuple

from .config import get_config
from .constants import TIME_EPSILON
from . import get_logger

logger = get_logger(__name__)

TickCallback = Callable[[float], None]
TimerCallback = Callable[[], None]


class Connection:
    """ティック購読のハンドル"""

    def __init__(self, clock: 'FrameClock', callback: TickCallback):
        self._clock = clock
        self.callback = callback
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        """購読を解除（複数回呼んでも安全）"""
        if not self._connected:
            return
        self._connected = False
        self._clock._remove_connection(self)


class TimerHandle:
    """遅延タイマーのハンドル"""

    def __init__(self, deadline: float, callback: TimerCallback):
        self.deadline = deadline
        self.callback = callback
        self._cancelled = False
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        """タイマーを取り消し（発火済みなら何もしない）"""
        if not self._fired:
            self._cancelled = True


class FrameClock:
    """フレームティックの配信とタイマー管理"""

    def __init__(self):
        self._connections: List[Connection] = []
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._timer_seq = itertools.count()
        self._time = 0.0
        self._frame_count = 0
        self._running = False

        self.stats = {
            'ticks': 0,
            'timers_fired': 0,
            'callback_errors': 0,
        }

    @property
    def time(self) -> float:
        """クロック時刻（秒）"""
        return self._time

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def subscriber_count(self) -> int:
        return len(self._connections)

    @property
    def pending_timer_count(self) -> int:
        return sum(1 for _, _, handle in self._timers if handle.pending)

    def connect(self, callback: TickCallback) -> Connection:
        """
        ティック購読を登録

        Args:
            callback: 毎フレーム dt（秒）を受け取るコールバック

        Returns:
            購読ハンドル
        """
        connection = Connection(self, callback)
        self._connections.append(connection)
        return connection

    def _remove_connection(self, connection: Connection) -> None:
        if connection in self._connections:
            self._connections.remove(connection)

    def delay(self, seconds: float, callback: TimerCallback) -> TimerHandle:
        """
        seconds 秒後に callback を呼ぶタイマーを登録

        Raises:
            ValueError: seconds が負の場合
        """
        seconds = float(seconds)
        if seconds < 0:
            raise ValueError(f"Timer delay must be non-negative, got {seconds}")
        handle = TimerHandle(self._time + seconds, callback)
        heapq.heappush(self._timers, (handle.deadline, next(self._timer_seq), handle))
        return handle

    def step(self, dt: float) -> None:
        """
        フレームを1つ進める

        購読者へは開始時点のスナップショット順に配信し、同じフレーム内で
        解除された購読はスキップする。その後、期限到来タイマーを期限順に発火する。

        Raises:
            ValueError: dt が負の場合
        """
        dt = float(dt)
        if dt < 0:
            raise ValueError(f"Frame delta must be non-negative, got {dt}")

        self._time += dt
        self._frame_count += 1
        self.stats['ticks'] += 1

        for connection in list(self._connections):
            if not connection.connected:
                continue
            try:
                connection.callback(dt)
            except Exception as e:
                self.stats['callback_errors'] += 1
                logger.error(f"Error in tick callback: {e}", exc_info=True)

        while self._timers and self._timers[0][0] <= self._time + TIME_EPSILON:
            _, _, handle = heapq.heappop(self._timers)
            if not handle.pending:
                continue
            handle._fired = True
            self.stats['timers_fired'] += 1
            try:
                handle.callback()
            except Exception as e:
                self.stats['callback_errors'] += 1
                logger.error(f"Error in timer callback: {e}", exc_info=True)

    def run(self, duration: float, fps: Optional[float] = None) -> int:
        """
        実時間でフレームを進める

        Args:
            duration: 実行時間（秒）
            fps: 目標フレームレート（Noneの場合は設定ファイルから取得）

        Returns:
            実行したフレーム数
        """
        fps = fps if fps is not None else get_config().clock.default_fps
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        frame_interval = 1.0 / fps

        self._running = True
        frames = 0
        start_time = time.perf_counter()
        last_time = start_time
        next_frame = start_time + frame_interval
        logger.info(f"Frame clock running: {duration:.2f}s at {fps:.1f} fps")

        try:
            while self._running and last_time - start_time < duration:
                now = time.perf_counter()
                if now < next_frame:
                    time.sleep(next_frame - now)
                    now = time.perf_counter()
                self.step(now - last_time)
                last_time = now
                next_frame += frame_interval
                # 大きく遅れた場合は追いつこうとしない
                if next_frame < now:
                    next_frame = now + frame_interval
                frames += 1
        finally:
            self._running = False

        logger.info(f"Frame clock stopped after {frames} frames")
        return frames

    def stop(self) -> None:
        """run() ループを停止"""
        self._running = False

    def get_stats(self) -> dict:
        """統計取得"""
        stats = self.stats.copy()
        stats['subscribers'] = self.subscriber_count
        stats['pending_timers'] = self.pending_timer_count
        return stats


# プロセス共通クロック（シングルトン）
class _FrameClockSingleton:
    """共通フレームクロック管理"""
    _instance: Optional[FrameClock] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> FrameClock:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = FrameClock()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """インスタンスをリセット（テスト用）"""
        with cls._lock:
            cls._instance = None


def get_frame_clock() -> FrameClock:
    """共通フレームクロックを取得"""
    return _FrameClockSingleton.get_instance()


def reset_frame_clock() -> None:
    """共通フレームクロックをリセット（テスト用）"""
    _FrameClockSingleton.reset_instance()
