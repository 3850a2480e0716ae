#!/usr/bin/env python3
"""
セグメントレジストリ

安定IDをキーに登録順を保ったままセグメントを管理し、
発見済みエミッションポイントとの差分で追加・削除を行います。
明示的に追加したセグメントはマーカーがなくても差分反映で削除されず、
ノードが消滅するか取り付け先から外れた場合にのみ削除されます。
"""

from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..scene import SceneNode
from .segment import Segment
from .. import get_logger

logger = get_logger(__name__)


class SegmentRegistry:
    """安定ID -> Segment の順序付きマップ"""

    def __init__(self, segment_factory: Callable[[SceneNode], Segment]):
        self._segment_factory = segment_factory
        self._segments: Dict[Any, Segment] = {}
        self._explicit: Set[Any] = set()

    def __len__(self) -> int:
        return len(self._segments)

    def __contains__(self, key: Any) -> bool:
        return key in self._segments

    def keys(self) -> List[Any]:
        return list(self._segments)

    def get(self, key: Any) -> Optional[Segment]:
        return self._segments.get(key)

    def all(self) -> Dict[Any, Segment]:
        """登録順のスナップショット"""
        return dict(self._segments)

    def is_explicit(self, key: Any) -> bool:
        return key in self._explicit

    def add(self, node: SceneNode, explicit: bool = False) -> Segment:
        """
        ノードを登録（既に登録済みなら既存セグメントを返す）

        Args:
            node: 追跡するノード
            explicit: 明示的な追加か（差分反映で未発見でも削除しない）
        """
        if explicit:
            self._explicit.add(node.node_id)
        existing = self._segments.get(node.node_id)
        if existing is not None:
            return existing
        segment = self._segment_factory(node)
        self._segments[segment.key] = segment
        return segment

    def remove(self, key: Any) -> Optional[Segment]:
        self._explicit.discard(key)
        return self._segments.pop(key, None)

    def clear(self) -> None:
        self._segments.clear()
        self._explicit.clear()

    def _keeps_explicit(self, segment: Segment, root: Optional[SceneNode]) -> bool:
        node = segment.instance
        if node is None:
            return False
        return root is None or node is root or node.is_descendant_of(root)

    def reconcile(
        self,
        discovered: Dict[Any, SceneNode],
        root: Optional[SceneNode] = None
    ) -> Tuple[List[Segment], List[Segment]]:
        """
        発見済みポイントと登録済みセグメントの差分を反映

        既存セグメントの状態（距離・位置など）は保持する。

        Args:
            discovered: {安定ID: ノード}
            root: 取り付け先ノード（明示追加セグメントの所属判定に使用）

        Returns:
            (追加したセグメント, 削除したセグメント)
        """
        stale = [
            key for key, segment in self._segments.items()
            if key not in discovered
            and not (key in self._explicit and self._keeps_explicit(segment, root))
        ]
        removed = [self.remove(key) for key in stale]
        added = [self.add(node) for key, node in discovered.items() if key not in self._segments]

        logger.debug(
            f"Reconciled segments: +{len(added)} -{len(removed)} "
            f"({len(self._segments)} tracked)"
        )
        return added, removed
