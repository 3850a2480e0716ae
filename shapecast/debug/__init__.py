"""
shapecast デバッグ表示

ヒットボックスのキャスト形状を可視化するためのプリミティブキャッシュを提供します。
Open3D への変換は viz エクストラをインストールした場合のみ利用できます。
"""

from .adornments import (
    Adornment,
    LineAdornment,
    SphereAdornment,
    BoxAdornment,
    AdornmentCache,
    get_adornment_cache,
    reset_adornment_cache
)

__all__ = [
    'Adornment',
    'LineAdornment',
    'SphereAdornment',
    'BoxAdornment',
    'AdornmentCache',
    'get_adornment_cache',
    'reset_adornment_cache'
]
