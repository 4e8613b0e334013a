"""插件契约

插件是任意实现 process(params, context) 的对象（同步或异步均可）。
编排器为每个阶段新建一个 PhaseContext，通过 params 传给插件；
PluginContext 向插件暴露包管理器、当前项目与插件自身配置。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from gottabe.core.models import (
    BuildDescriptor,
    CommandOptions,
    Phase,
    ResolvedPackage,
    TargetConfig,
)

if TYPE_CHECKING:
    from gottabe.build.project import Project
    from gottabe.manager import PackageManager


class Plugin(Protocol):
    """插件协议

    可选属性:
        name: 插件名（日志与错误信息使用，缺省为类名）
        config_schema: 插件配置的 JSON Schema，注册时校验
    """

    def process(self, params: PhaseContext, context: PluginContext) -> Any:
        """处理一个阶段；返回协程时编排器会等待其完成"""
        ...


def plugin_name(plugin: Any) -> str:
    return str(getattr(plugin, "name", "") or type(plugin).__name__)


@dataclass
class PhaseContext:
    """单个阶段的上下文（插件看到的 PhaseParams）"""

    phase: Phase
    descriptor: BuildDescriptor
    options: CommandOptions
    project: Project | None = None
    target: TargetConfig | None = None
    input_files: list[Path] = field(default_factory=list)
    destination_dir: Path | None = None
    dependencies: list[ResolvedPackage] = field(default_factory=list)
    previous: PhaseContext | None = field(default=None, repr=False)
    _default_prevented: bool = field(default=False, repr=False)
    _sealed: bool = field(default=False, repr=False)

    @property
    def default_prevented(self) -> bool:
        return self._default_prevented

    def prevent_default(self) -> None:
        """阻止本阶段的内置默认行为，只在本阶段插件执行期间有效"""
        if self._sealed:
            raise RuntimeError(f"阶段 {self.phase.name} 已结束，无法再阻止默认行为")
        self._default_prevented = True

    def seal(self) -> None:
        self._sealed = True


# 插件侧的惯用名称
PhaseParams = PhaseContext


class PluginContext:
    """插件可用的运行时服务"""

    def __init__(
        self,
        package_manager: PackageManager,
        project: Project | None,
        plugin_config: Any = None,
    ) -> None:
        self._package_manager = package_manager
        self._project = project
        self._plugin_config = plugin_config

    def get_package_manager(self) -> PackageManager:
        return self._package_manager

    def get_current_project(self) -> Project | None:
        return self._project

    def get_plugin_config(self) -> Any:
        return self._plugin_config
