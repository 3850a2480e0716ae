#!/usr/bin/env python3
"""
shapecast 設定管理システム

プロジェクト全体で使用される設定値を統一管理し、
Magic Numberのハードコーディングを解消します。
"""

import yaml
from dataclasses import asdict, dataclass, field, fields
from typing import Optional, Dict, Any
from pathlib import Path

from .constants import (
    DEFAULT_RESOLUTION,
    DEFAULT_POINT_MARKER,
    DEFAULT_STATIONARY_PROBE_LENGTH,
    DEFAULT_SWEEP_REFINE_ITERATIONS,
    MAX_TRIANGLES_PER_LEAF,
    SPATIAL_INDEX_MAX_DEPTH,
    DEFAULT_FPS,
    DEFAULT_ADORNMENT_IDLE_TIMEOUT,
    DEFAULT_HIT_COLOR,
    DEFAULT_MISS_COLOR,
)
from .data_types import CastData, CastDataError
from . import get_logger

logger = get_logger(__name__)


@dataclass
class HitboxConfig:
    """ヒットボックス設定"""
    # キャスト頻度
    default_resolution: float = DEFAULT_RESOLUTION

    # 同一アクティブ期間内で一度ヒットしたパーツを除外するか
    filter_parts_hit: bool = False

    # エミッションポイント探索
    point_marker: str = DEFAULT_POINT_MARKER

    # 静止フレームのプローブ長
    stationary_probe_length: float = DEFAULT_STATIONARY_PROBE_LENGTH

    # デフォルトキャスト設定（CastData.from_dict 形式）
    default_cast_data: Dict[str, Any] = field(default_factory=lambda: {"cast_type": "Raycast"})

    def build_cast_data(self) -> CastData:
        """デフォルトキャスト設定を生成"""
        return CastData.from_dict(dict(self.default_cast_data))


@dataclass
class WorldConfig:
    """メッシュワールド設定"""
    sweep_refine_iterations: int = DEFAULT_SWEEP_REFINE_ITERATIONS
    bvh_max_triangles_per_leaf: int = MAX_TRIANGLES_PER_LEAF
    bvh_max_depth: int = SPATIAL_INDEX_MAX_DEPTH


@dataclass
class DebugConfig:
    """デバッグ表示設定"""
    adornment_idle_timeout: float = DEFAULT_ADORNMENT_IDLE_TIMEOUT
    hit_color: tuple = DEFAULT_HIT_COLOR
    miss_color: tuple = DEFAULT_MISS_COLOR


@dataclass
class ClockConfig:
    """フレームクロック設定"""
    default_fps: float = DEFAULT_FPS


@dataclass
class ShapecastConfig:
    """プロジェクト全体設定"""
    hitbox: HitboxConfig = field(default_factory=HitboxConfig)
    world: WorldConfig = field(default_factory=WorldConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)
    clock: ClockConfig = field(default_factory=ClockConfig)

    # ログ設定
    log_level: str = "INFO"
    log_format_style: str = "detailed"


# セクション名 -> 設定クラス
_SECTIONS = ("hitbox", "world", "debug", "clock")


class ConfigManager:
    """設定管理クラス"""

    def __init__(self):
        self._config: Optional[ShapecastConfig] = None
        self._config_file_path: Optional[Path] = None

    def load_config(self, config_file: Optional[Path] = None) -> ShapecastConfig:
        """
        設定ファイルを読み込み

        Args:
            config_file: 設定ファイルパス（Noneの場合はデフォルト設定）

        Returns:
            読み込まれた設定

        Raises:
            CastDataError: default_cast_data が不正な場合
        """
        if config_file is None:
            project_root = Path(__file__).parent.parent
            default_paths = [
                project_root / "shapecast.yaml",
                project_root / "config.yaml",
                Path.home() / ".shapecast" / "config.yaml"
            ]

            for path in default_paths:
                if path.exists():
                    config_file = path
                    break

        if config_file is not None:
            config_file = Path(config_file)

        if config_file and config_file.exists():
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    config_dict = yaml.safe_load(f) or {}

                self._config = self._dict_to_config(config_dict)
                self._config_file_path = config_file
                logger.info(f"Configuration loaded from {config_file}")

            except CastDataError:
                raise
            except Exception as e:
                logger.warning(f"Failed to load config from {config_file}: {e}")
                logger.info("Using default configuration")
                self._config = ShapecastConfig()
        else:
            logger.info("No config file found, using default configuration")
            self._config = ShapecastConfig()

        return self._config

    def save_config(self, config_file: Optional[Path] = None) -> bool:
        """
        設定をファイルに保存

        Args:
            config_file: 保存先ファイルパス

        Returns:
            保存成功したかどうか
        """
        if self._config is None:
            logger.error("No configuration to save")
            return False

        if config_file is None:
            config_file = self._config_file_path or Path("shapecast.yaml")
        config_file = Path(config_file)

        try:
            config_dict = self._config_to_dict(self._config)

            config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_dict, f, default_flow_style=False,
                               allow_unicode=True, indent=2)

            logger.info(f"Configuration saved to {config_file}")
            return True

        except Exception as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False

    def get_config(self) -> ShapecastConfig:
        """現在の設定を取得"""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def set_config(self, config: ShapecastConfig) -> None:
        """設定を直接差し替える"""
        self._config = config

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> ShapecastConfig:
        """辞書を設定オブジェクトに変換（未知のキーは無視）"""
        if not isinstance(config_dict, dict):
            raise ValueError(f"Config root must be a mapping, got {type(config_dict).__name__}")

        config = ShapecastConfig()

        for section_name in _SECTIONS:
            section_dict = config_dict.get(section_name)
            if not isinstance(section_dict, dict):
                continue
            section = getattr(config, section_name)
            for key, value in section_dict.items():
                if hasattr(section, key):
                    if isinstance(getattr(section, key), tuple) and isinstance(value, list):
                        value = tuple(value)
                    setattr(section, key, value)
                else:
                    logger.debug(f"Ignoring unknown config key: {section_name}.{key}")

        for key in ('log_level', 'log_format_style'):
            if key in config_dict:
                setattr(config, key, config_dict[key])

        # キャスト設定は読み込み時点で検証する
        config.hitbox.build_cast_data()

        return config

    def _config_to_dict(self, config: ShapecastConfig) -> Dict[str, Any]:
        """設定オブジェクトを辞書に変換"""
        result: Dict[str, Any] = {}
        for section_name in _SECTIONS:
            section = asdict(getattr(config, section_name))
            result[section_name] = {
                key: list(value) if isinstance(value, tuple) else value
                for key, value in section.items()
            }
        for f in fields(config):
            if f.name not in _SECTIONS:
                result[f.name] = getattr(config, f.name)
        return result


# グローバル設定マネージャー
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """グローバル設定マネージャーを取得"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def get_config() -> ShapecastConfig:
    """現在の設定を取得"""
    return get_config_manager().get_config()

def load_config(config_file: Optional[Path] = None) -> ShapecastConfig:
    """設定を読み込み"""
    return get_config_manager().load_config(config_file)

def save_config(config_file: Optional[Path] = None) -> bool:
    """設定を保存"""
    return get_config_manager().save_config(config_file)

def reset_config() -> None:
    """グローバル設定をリセット（テスト用）"""
    global _config_manager
    _config_manager = None
