"""插件系统

插件是实现 process(params, context) 的对象，可同步可异步。
通过 PluginRegistry.register(plugin, phases) 绑定到构建阶段，
或在 build.yml 中以 main: "module:Class" / entry point 声明后由加载器注册。
"""

from gottabe.plugins.base import PhaseContext, PhaseParams, Plugin, PluginContext
from gottabe.plugins.registry import PluginBinding, PluginRegistry

__all__ = [
    "PhaseContext",
    "PhaseParams",
    "Plugin",
    "PluginBinding",
    "PluginContext",
    "PluginRegistry",
]
