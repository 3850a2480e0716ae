"""
shapecast ワールドジオメトリ

ヒットボックスのキャスト先となるワールドを三角形メッシュで表現し、
CastProvider プロトコルを満たす参照実装 MeshWorld を提供します。

処理フロー:
1. メッシュ (mesh.py) - 三角形メッシュと基本形状の生成
2. 空間検索 (index.py) - BVH による候補三角形の絞り込み
3. 交差判定 (intersect.py) - レイ/球/OBB と三角形の判定
4. キャスト (world.py) - 最も近いブロッキングヒットの解決
"""

from .mesh import (
    TriangleMesh,
    create_box_mesh,
    create_plane_mesh
)

from .index import (
    BoundingBox,
    BVHNode,
    SpatialIndex,
    build_bvh_index
)

from .world import (
    WorldPart,
    MeshWorld,
    get_default_world,
    reset_default_world
)

__all__ = [
    # メッシュ
    'TriangleMesh',
    'create_box_mesh',
    'create_plane_mesh',

    # 空間検索
    'BoundingBox',
    'BVHNode',
    'SpatialIndex',
    'build_bvh_index',

    # ワールド
    'WorldPart',
    'MeshWorld',
    'get_default_world',
    'reset_default_world'
]
