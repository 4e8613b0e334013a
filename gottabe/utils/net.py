"""网络工具 — 仓库服务器 URL 校验与拼接"""

from __future__ import annotations

from urllib.parse import quote, urlparse

from gottabe.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def join_url(base: str, *parts: str) -> str:
    """拼接服务器地址与路径片段，片段逐个做 URL 转义"""
    path = "/".join(quote(p, safe="") for p in parts)
    return f"{base.rstrip('/')}/{path}"
