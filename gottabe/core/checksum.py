"""内容摘要计算与校验（SHA-256）"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from gottabe.core.exceptions import ChecksumMismatchError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def file_checksum(path: Path) -> str:
    """分块计算文件的 SHA-256 十六进制摘要"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def bytes_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def same_checksum(a: str, b: str) -> bool:
    """大小写与首尾空白不敏感的摘要比较"""
    return a.strip().lower() == b.strip().lower()


def verify_file(path: Path, expected: str) -> str:
    """校验文件摘要，不一致时抛 ChecksumMismatchError，返回实际摘要"""
    actual = file_checksum(path)
    if not same_checksum(actual, expected):
        raise ChecksumMismatchError(
            f"校验和不匹配 {path.name}: 期望 {expected}, 实际 {actual}",
        )
    logger.debug("校验和通过: %s", path.name)
    return actual
