#!/usr/bin/env python3
"""
コールバックリスト

登録順に呼び出し、1つのコールバックの例外が他に波及しないよう隔離します。
"""

from typing import Any, Callable, Iterator, List, Optional

from .. import get_logger

logger = get_logger(__name__)


class CallbackList:
    """登録順のコールバックリスト"""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable[..., Any]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def __iter__(self) -> Iterator[Callable[..., Any]]:
        return iter(self.snapshot())

    def add(self, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            raise TypeError(f"{self.name} callback must be callable, got {type(callback).__name__}")
        self._callbacks.append(callback)

    def remove(self, callback: Callable[..., Any]) -> bool:
        """最初に一致したコールバックを削除"""
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            return True
        return False

    def clear(self) -> None:
        self._callbacks.clear()

    def snapshot(self) -> List[Callable[..., Any]]:
        return list(self._callbacks)

    def fire(self, *args: Any, should_continue: Optional[Callable[[], bool]] = None) -> List[Any]:
        """
        コールバックを登録順に呼び出す

        Args:
            *args: 各コールバックへの引数
            should_continue: 各呼び出し前に評価し、False なら残りを中止

        Returns:
            呼び出したコールバックの戻り値（例外時は None）
        """
        results: List[Any] = []
        for callback in self.snapshot():
            if should_continue is not None and not should_continue():
                break
            try:
                results.append(callback(*args))
            except Exception as e:
                logger.error(f"Error in {self.name} callback: {e}", exc_info=True)
                results.append(None)
        return results
