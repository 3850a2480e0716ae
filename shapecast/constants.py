#!/usr/bin/env python3
"""
共通定数・設定値

ヒットボックス判定全体で使用される定数や閾値を一元管理し、
モジュール間の循環依存を解消します。
"""

from typing import Final

# =============================================================================
# 数値精度・許容誤差
# =============================================================================

NUMERICAL_TOLERANCE: Final[float] = 1e-9
DISTANCE_EPSILON: Final[float] = 1e-8
# スロットル判定で 1/60 + 1/60 < 1/30 となる浮動小数誤差を吸収する
TIME_EPSILON: Final[float] = 1e-9

# =============================================================================
# ヒットボックス関連
# =============================================================================

# 1秒あたりの最大キャスト回数（フレームレートで頭打ち）
DEFAULT_RESOLUTION: Final[float] = 60.0

# エミッションポイントを示す属性名
DEFAULT_POINT_MARKER: Final[str] = "DmgPoint"

# 静止フレームで直前の進行方向へ伸ばすプローブ長
DEFAULT_STATIONARY_PROBE_LENGTH: Final[float] = 0.1

# ブロックキャストで回転を補間する1区間あたりの最大回転角[deg]
BLOCKCAST_MAX_ROTATION_STEP_DEG: Final[float] = 15.0

# =============================================================================
# ワールド（キャストプロバイダ）関連
# =============================================================================

# 初回接触の二分探索反復回数
DEFAULT_SWEEP_REFINE_ITERATIONS: Final[int] = 12

# BVH
MAX_TRIANGLES_PER_LEAF: Final[int] = 8
SPATIAL_INDEX_MAX_DEPTH: Final[int] = 20

# =============================================================================
# フレームクロック関連
# =============================================================================

DEFAULT_FPS: Final[float] = 60.0

# =============================================================================
# デバッグ表示関連
# =============================================================================

# 未使用のアドーンメントを非表示にするまでの秒数
DEFAULT_ADORNMENT_IDLE_TIMEOUT: Final[float] = 2.0
DEFAULT_HIT_COLOR: Final[tuple] = (1.0, 0.0, 0.0)
DEFAULT_MISS_COLOR: Final[tuple] = (0.0, 1.0, 0.0)
