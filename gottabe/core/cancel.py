"""构建取消令牌

在阶段边界与每个包的下载边界检查，用户中断时由 CLI 触发。
"""

from __future__ import annotations

import threading

from gottabe.core.exceptions import BuildCancelledError


class CancellationToken:
    """线程安全的取消信号"""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "用户中断") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, where: str = "") -> None:
        """已取消时抛 BuildCancelledError"""
        if self._event.is_set():
            label = f" ({where})" if where else ""
            raise BuildCancelledError(f"构建已取消{label}: {self.reason}")
