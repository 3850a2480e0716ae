"""
shapecast ヒットボックス

取り付けたノードのエミッションポイントから毎フレームキャストを行い、
移動経路上の最初の交差を報告する連続衝突判定コントローラーです。

処理フロー:
1. セグメント (segment.py) - ポイント1つ分の掃引状態とキャスト
2. レジストリ (registry.py) - 安定IDによるセグメント管理と差分反映
3. コールバック (callbacks.py) - 例外を隔離した登録順呼び出し
4. コントローラー (hitbox.py) - 状態遷移・スロットル・ヒット解決
"""

from .callbacks import CallbackList
from .segment import Segment
from .registry import SegmentRegistry
from .hitbox import Hitbox, HitboxState

__all__ = [
    'CallbackList',
    'Segment',
    'SegmentRegistry',
    'Hitbox',
    'HitboxState'
]
