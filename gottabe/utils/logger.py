"""gottabe 日志配置

文本与 JSON 两种输出格式；每条日志带上当前构建阶段（由编排器通过 phase_scope 设置），
便于在 CI 日志里按阶段过滤。
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator

_current_phase: ContextVar[str] = ContextVar("gottabe_phase", default="-")

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] [%(phase)s] %(name)s: %(message)s"


@contextmanager
def phase_scope(phase: str) -> Iterator[None]:
    """在 with 块内把日志的 phase 字段设为给定阶段名"""
    token = _current_phase.set(phase)
    try:
        yield
    finally:
        _current_phase.reset(token)


def current_phase() -> str:
    return _current_phase.get()


class PhaseFilter(logging.Filter):
    """为日志记录注入 phase 属性"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "phase"):
            record.phase = _current_phase.get()
        return True


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI 流水线消费

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "INFO",
            "logger": "gottabe.build.orchestrator",
            "phase": "COMPILE",
            "message": "log message",
            "exception": "traceback..." (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "phase": getattr(record, "phase", _current_phase.get()),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器（输出到 stderr，替换已有 handlers）

    参数:
        level: 日志级别字符串，未知值按 INFO 处理
        json_output: 为 True 时每行输出一个 JSON 对象
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(PhaseFilter())
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
