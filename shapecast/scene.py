#!/usr/bin/env python3
"""
シーングラフ

ヒットボックスを取り付けるオブジェクトの階層構造を表現します。
各ノードはローカル姿勢と任意の属性を持ち、属性マーカーの付いた子孫ノードが
キャストを発射するエミッションポイントになります。
"""

import itertools
import weakref
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from .data_types import ArrayLike, Pose
from .constants import DEFAULT_POINT_MARKER
from . import get_logger

logger = get_logger(__name__)

# プロセス内で一意なノードID
_node_ids = itertools.count(1)


class SceneNode:
    """シーングラフのノード（パーツ・アタッチメント）"""

    def __init__(
        self,
        name: str,
        pose: Optional[Pose] = None,
        parent: Optional['SceneNode'] = None,
        attributes: Optional[Dict[str, Any]] = None
    ):
        """
        初期化

        Args:
            name: ノード名
            pose: 親座標系でのローカル姿勢
            parent: 親ノード
            attributes: 任意の属性（エミッションポイントのマーカーなど）
        """
        self.node_id: int = next(_node_ids)
        self.name = name
        self.local_pose = pose if pose is not None else Pose.identity()
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self._children: List['SceneNode'] = []
        self._parent_ref: Optional[weakref.ref] = None
        if parent is not None:
            self.set_parent(parent)

    def __repr__(self) -> str:
        return f"SceneNode({self.name!r}, id={self.node_id})"

    # ------------------------------------------------------------------
    # 階層
    # ------------------------------------------------------------------
    @property
    def parent(self) -> Optional['SceneNode']:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def children(self) -> List['SceneNode']:
        return list(self._children)

    def set_parent(self, parent: Optional['SceneNode']) -> None:
        """親ノードを付け替える（None で切り離し）"""
        current = self.parent
        if current is not None:
            current._children.remove(self)
        if parent is None:
            self._parent_ref = None
            return
        ancestor = parent
        while ancestor is not None:
            if ancestor is self:
                raise ValueError(f"Cannot parent {self.name!r} under its own descendant")
            ancestor = ancestor.parent
        parent._children.append(self)
        self._parent_ref = weakref.ref(parent)

    def add_child(self, child: 'SceneNode') -> 'SceneNode':
        child.set_parent(self)
        return child

    def remove(self) -> None:
        """親から切り離す"""
        self.set_parent(None)

    def iter_descendants(self) -> Iterator['SceneNode']:
        """子孫ノードを深さ優先で列挙（自身は含まない）"""
        stack = list(reversed(self._children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node._children))

    def is_descendant_of(self, ancestor: 'SceneNode') -> bool:
        """ancestor の子孫か（自身は含まない）"""
        node = self.parent
        while node is not None:
            if node is ancestor:
                return True
            node = node.parent
        return False

    def find_first_child(self, name: str) -> Optional['SceneNode']:
        for child in self._children:
            if child.name == name:
                return child
        return None

    # ------------------------------------------------------------------
    # 姿勢
    # ------------------------------------------------------------------
    @property
    def world_pose(self) -> Pose:
        """ワールド座標系での姿勢"""
        pose = self.local_pose
        node = self.parent
        while node is not None:
            pose = node.local_pose * pose
            node = node.parent
        return pose

    @property
    def world_position(self) -> np.ndarray:
        return self.world_pose.position

    def move_to(self, position: ArrayLike) -> None:
        """ローカル位置を設定"""
        self.local_pose = Pose(np.asarray(position, dtype=float), self.local_pose.rotation)

    def translate(self, offset: ArrayLike) -> None:
        """ローカル位置を平行移動"""
        self.local_pose = self.local_pose.translated(offset)

    # ------------------------------------------------------------------
    # 属性
    # ------------------------------------------------------------------
    def get_attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


def add_emission_point(
    parent: SceneNode,
    name: str,
    position: ArrayLike,
    marker: str = DEFAULT_POINT_MARKER
) -> SceneNode:
    """
    エミッションポイント（マーカー属性付きのアタッチメント）を追加

    Args:
        parent: 親ノード
        name: ノード名
        position: 親座標系での位置
        marker: マーカー属性名

    Returns:
        追加されたノード
    """
    return SceneNode(name, Pose(np.asarray(position, dtype=float)), parent=parent, attributes={marker: True})


def discover_emission_points(
    instance: SceneNode,
    marker: str = DEFAULT_POINT_MARKER
) -> Dict[int, SceneNode]:
    """
    子孫ノードからエミッションポイントを探索

    Args:
        instance: ヒットボックスを取り付けたノード
        marker: マーカー属性名（真値の属性を持つノードが対象）

    Returns:
        {安定ID: ノード}
    """
    points = {
        node.node_id: node
        for node in instance.iter_descendants()
        if node.get_attribute(marker)
    }
    logger.debug(f"Discovered {len(points)} emission points under {instance.name!r}")
    return points
