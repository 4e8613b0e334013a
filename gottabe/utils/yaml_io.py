"""YAML 读写

构建描述、设置文件、缓存条目与仓库里的描述文件都走这里：
UTF-8、大小上限、顶层必须是字典，写入一律原子替换。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 描述文件与设置文件都很小，超过此值视为异常输入
MAX_YAML_BYTES = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """写同目录临时文件后 os.replace，读者只会看到旧内容或新内容"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def parse_yaml(text: str, source: str = "<text>") -> dict[str, Any]:
    """解析 YAML 文本为字典

    空文档返回空字典；顶层不是字典时记录警告并返回空字典。

    异常:
        yaml.YAMLError: 格式错误
        ValueError: 内容超过 MAX_YAML_BYTES
    """
    size = len(text.encode("utf-8"))
    if size > MAX_YAML_BYTES:
        raise ValueError(f"YAML 内容过大: {source} ({size} 字节，上限 {MAX_YAML_BYTES})")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 失败: %s - %s", source, e)
        raise
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("%s 顶层不是字典 (%s)，按空处理", source, type(data).__name__)
        return {}
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 文件，文件不存在时返回空字典"""
    p = Path(path)
    if not p.is_file():
        return {}
    if p.stat().st_size > MAX_YAML_BYTES:
        raise ValueError(f"YAML 文件过大: {p} (上限 {MAX_YAML_BYTES} 字节)")
    return parse_yaml(p.read_text(encoding="utf-8"), str(p))


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本；键顺序保持不变，同一数据总得到同一文本"""
    return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)


def save_yaml(path: str | Path, data: Any) -> None:
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except OSError as e:
        logger.error("写入 YAML 失败: %s - %s", p, e)
        raise
