"""构建上下文 — 单次运行的显式依赖容器

每次运行（CLI 命令、测试）显式构造一个 BuildContext，组件懒加载且在同一上下文内共享；
不存在进程级单例。

用法:
    ctx = BuildContext(Config.from_file())
    pm = ctx.package_manager          # 懒加载
    ctx.plugins.register(MyPlugin(), [Phase.COMPILE])

    # 测试中替换传输层
    ctx = BuildContext(cfg, transport=FakeTransport())
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gottabe.core.cancel import CancellationToken
from gottabe.core.config import Config

if TYPE_CHECKING:
    from gottabe.cache.manager import PackageCacheManager
    from gottabe.manager import PackageManager
    from gottabe.plugins.registry import PluginRegistry
    from gottabe.repository.client import RemoteRepositoryClient
    from gottabe.repository.transport import RepositoryTransport
    from gottabe.resolver.resolver import DependencyResolver

logger = logging.getLogger(__name__)


class BuildContext:
    """懒加载组件容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        transport: RepositoryTransport | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        self._config = config or Config()
        self._transport = transport
        self.cancel = cancel or CancellationToken()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def cache(self) -> PackageCacheManager:
        if "cache" not in self._instances:
            from gottabe.cache.manager import PackageCacheManager
            self._instances["cache"] = PackageCacheManager(self._config.cache_path)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def client(self) -> RemoteRepositoryClient:
        if "client" not in self._instances:
            from gottabe.repository.client import RemoteRepositoryClient
            self._instances["client"] = RemoteRepositoryClient(
                self._transport,
                server_timeout=self._config.server_timeout,
                package_timeout=self._config.package_timeout,
                cancel=self.cancel,
            )
        return self._instances["client"]  # type: ignore[return-value]

    @property
    def resolver(self) -> DependencyResolver:
        if "resolver" not in self._instances:
            from gottabe.resolver.resolver import DependencyResolver
            self._instances["resolver"] = DependencyResolver(
                self.cache, self.client, self._config.servers,
                max_workers=self._config.max_workers, cancel=self.cancel,
            )
        return self._instances["resolver"]  # type: ignore[return-value]

    @property
    def package_manager(self) -> PackageManager:
        if "package_manager" not in self._instances:
            from gottabe.manager import PackageManager
            self._instances["package_manager"] = PackageManager(
                self.cache, self.client, self._config,
            )
        return self._instances["package_manager"]  # type: ignore[return-value]

    @property
    def plugins(self) -> PluginRegistry:
        if "plugins" not in self._instances:
            from gottabe.plugins.registry import PluginRegistry
            self._instances["plugins"] = PluginRegistry()
        return self._instances["plugins"]  # type: ignore[return-value]
