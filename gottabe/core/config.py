"""集中配置管理（设置文件）

提供统一的配置入口：包缓存目录、远程仓库服务器列表、超时、并发度、发布凭据。
支持从 YAML 设置文件加载 + 编程式覆盖。配置对象由 BuildContext 显式持有，
不设进程级单例。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gottabe.core.exceptions import ConfigError
from gottabe.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "~/.gottabe/settings.yml"


@dataclass
class Credentials:
    """服务器发布凭据"""

    username: str
    password: str


@dataclass
class Config:
    """全局设置"""

    # 目录
    cache_dir: str = "~/.gottabe/packages"
    build_dir: str = "build"

    # 远程仓库
    servers: list[str] = field(default_factory=list)
    credentials: dict[str, Credentials] = field(default_factory=dict)

    # 网络
    server_timeout: float = 30.0     # 单个服务器单次请求超时（秒）
    package_timeout: float = 300.0   # 单个包跨所有服务器的总等待预算（秒）

    # 并发
    max_workers: int = 4

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @property
    def cache_path(self) -> Path:
        return Path(os.path.expanduser(self.cache_dir))

    def credentials_for(self, server: str) -> Credentials | None:
        return self.credentials.get(server.rstrip("/"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        known = {f for f in cls.__dataclass_fields__}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}

        servers = matched.get("servers") or []
        if not isinstance(servers, list):
            raise ConfigError("设置项 'servers' 必须是列表")
        matched["servers"] = [str(s) for s in servers]

        creds: dict[str, Credentials] = {}
        for server, info in (matched.get("credentials") or {}).items():
            if not isinstance(info, dict) or "username" not in info or "password" not in info:
                raise ConfigError(f"服务器 {server} 的凭据需包含 username 和 password")
            creds[str(server).rstrip("/")] = Credentials(
                username=str(info["username"]), password=str(info["password"]),
            )
        matched["credentials"] = creds

        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"设置项无效: {e}") from e
        cfg.extra = extra
        return cfg

    @classmethod
    def from_file(cls, path: str = DEFAULT_SETTINGS_FILE) -> Config:
        """从 YAML 设置文件加载，不存在则返回默认"""
        p = Path(os.path.expanduser(path))
        try:
            data = load_yaml(p)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"设置文件无法解析: {p} - {e}") from e
        if not data:
            return cls()
        cfg = cls.from_dict(data)
        logger.info("设置已加载: %s (%d 个服务器)", p, len(cfg.servers))
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)
