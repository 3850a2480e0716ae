#!/usr/bin/env python3
"""
shapecast メインパッケージ

レイ・ボックス・球のシェイプキャストによる連続ヒットボックス判定ライブラリ。
プロジェクト全体で使用される共通ロギング機能を提供します。
"""

import logging
import sys
from pathlib import Path
from typing import Optional

# プロジェクト情報
__version__ = "0.1.0"
__author__ = "Shapecast Development Team"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    format_style: Optional[str] = None
) -> logging.Logger:
    """
    プロジェクト全体の統一ログ設定

    Args:
        level: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL)。Noneの場合は設定ファイルの log_level
        log_file: ログファイルパス（Noneならコンソールのみ）
        format_style: フォーマットスタイル ("simple", "detailed", "debug")。Noneの場合は設定ファイルの log_format_style

    Returns:
        設定済みルートロガー
    """
    if level is None or format_style is None:
        # config は get_logger を import するため遅延 import
        from .config import get_config
        config = get_config()
        level = level if level is not None else config.log_level
        format_style = format_style if format_style is not None else config.log_format_style

    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    formats = {
        "simple": "%(levelname)s: %(message)s",
        "detailed": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "debug": "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d: %(message)s"
    }

    log_format = formats.get(format_style, formats["detailed"])
    formatter = logging.Formatter(log_format, datefmt='%H:%M:%S')

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # 既存ハンドラークリア
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    モジュール用ロガーを取得

    Args:
        name: ロガー名（通常は __name__ を使用）

    Returns:
        設定済みロガー
    """
    return logging.getLogger(name)


# ライブラリとして import された場合はハンドラー未設定の警告を抑止する
logging.getLogger(__name__).addHandler(logging.NullHandler())
