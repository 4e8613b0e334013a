"""统一异常体系

所有业务异常继承 GottaBeError。CLI 层据此输出一行友好提示，
仓库服务器据此映射 HTTP 状态码。
"""

from __future__ import annotations


class GottaBeError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(GottaBeError):
    """构建描述文件或设置文件缺失、内容无效（在任何阶段开始前中止）"""

    code = "CONFIG_ERROR"


class ValidationError(GottaBeError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class CycleError(GottaBeError):
    """依赖图中存在环"""

    code = "DEPENDENCY_CYCLE"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(cycle)}")
        self.cycle = cycle


class VersionConflictError(GottaBeError):
    """同一描述文件内对同一坐标声明了不同版本"""

    code = "VERSION_CONFLICT"


class NotInCacheError(GottaBeError):
    """包变体不在本地缓存中（可恢复，由解析器回退到远程下载）"""

    code = "NOT_IN_CACHE"


class PackageNotFoundError(GottaBeError):
    """所有服务器均无法提供请求的包变体"""

    code = "PACKAGE_NOT_FOUND"

    def __init__(self, message: str, servers: list[str] | None = None) -> None:
        super().__init__(message)
        self.servers = servers or []


class ChecksumMismatchError(GottaBeError):
    """重新下载后校验和仍不一致（服务器端数据损坏）"""

    code = "CHECKSUM_MISMATCH"


class PublishError(GottaBeError):
    """发布失败（服务器拒绝或已存在不同内容的同版本包）"""

    code = "PUBLISH_ERROR"


class PluginError(GottaBeError):
    """插件 process 抛出异常，构建在当前阶段中止"""

    code = "PLUGIN_ERROR"

    def __init__(self, message: str, *, phase: str = "", plugin: str = "") -> None:
        super().__init__(message)
        self.phase = phase
        self.plugin = plugin


class BuildCancelledError(GottaBeError):
    """构建在阶段边界或下载边界被取消"""

    code = "BUILD_CANCELLED"
