"""插件加载

构建描述中的插件声明按以下顺序定位实现:
- main: "module:Class" 直接导入
- 否则在 gottabe.plugins entry point 组中按包坐标、artifactId 查找
"""

from __future__ import annotations

import importlib
import logging
from importlib.metadata import entry_points
from typing import Any

from gottabe.core.descriptor import parse_coordinate
from gottabe.core.exceptions import ConfigError
from gottabe.core.models import BuildDescriptor, PluginConfig, TargetConfig
from gottabe.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "gottabe.plugins"


def _import_reference(ref: str, package: str) -> Any:
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"插件 {package} 的 main 格式应为 'module:Class': {ref}")
    try:
        mod = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"加载插件失败: {package} ({module_name}) - {e}") from e
    try:
        return getattr(mod, attr)
    except AttributeError:
        raise ConfigError(f"插件模块 {module_name} 中没有 {attr}") from None


def _from_entry_points(package: str) -> Any:
    dep = parse_coordinate(package, require_version=False)
    names = (package, dep.identity.coordinate, dep.identity.artifact_id)
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        if ep.name in names:
            return ep.load()
    raise ConfigError(
        f"找不到插件 {package}: 未指定 main，且 entry point 组 "
        f"'{ENTRY_POINT_GROUP}' 中没有匹配项"
    )


def instantiate(spec: PluginConfig) -> Any:
    """按插件声明创建插件实例"""
    factory = _import_reference(spec.main, spec.package) if spec.main \
        else _from_entry_points(spec.package)
    if isinstance(factory, type) or not hasattr(factory, "process"):
        # 插件类或工厂函数
        return factory()
    return factory


def load_plugins(specs: list[PluginConfig], registry: PluginRegistry) -> list[int]:
    """实例化并注册插件，返回注册句柄"""
    handles = []
    for spec in specs:
        plugin = instantiate(spec)
        handles.append(registry.register(
            plugin, spec.phases or None, spec.config, name=spec.package,
        ))
        logger.info("插件已加载: %s", spec.package)
    return handles


def load_descriptor_plugins(
    descriptor: BuildDescriptor,
    target: TargetConfig | None,
    registry: PluginRegistry,
) -> list[int]:
    """加载构建描述顶层插件，再加载当前目标的插件"""
    specs = list(descriptor.plugins)
    if target is not None:
        specs.extend(target.plugins)
    return load_plugins(specs, registry)
