"""插件注册表

按注册顺序保存 PluginBinding；查询某阶段时返回绑定了该阶段的子序列。
注册时用插件声明的 JSON Schema 校验插件配置。
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import jsonschema
from jsonschema import Draft7Validator

from gottabe.core.exceptions import ValidationError
from gottabe.core.models import Phase
from gottabe.plugins.base import Plugin, plugin_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginBinding:
    """插件实例 + 阶段集合 + 注册序号 + 已校验配置"""

    handle: int
    plugin: Plugin
    phases: frozenset[Phase]
    config: Any = None
    name: str = ""

    def binds(self, phase: Phase) -> bool:
        return phase in self.phases


def validate_config(config: Any, schema: dict[str, Any], plugin: str) -> None:
    """按 JSON Schema (Draft 7) 校验插件配置"""
    try:
        Draft7Validator.check_schema(schema)
    except jsonschema.SchemaError as e:
        raise ValidationError(f"插件 {plugin} 声明的配置 schema 无效: {e.message}") from e

    errors = sorted(Draft7Validator(schema).iter_errors(config), key=lambda e: list(e.path))
    if errors:
        details = [
            f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
            for err in errors
        ]
        raise ValidationError(f"插件 {plugin} 的配置无效", details=details)


class PluginRegistry:
    """插件注册表"""

    def __init__(self) -> None:
        self._bindings: list[PluginBinding] = []
        self._handles = itertools.count(1)

    def register(
        self,
        plugin: Plugin,
        phases: Iterable[Phase] | None = None,
        config: Any = None,
        schema: dict[str, Any] | None = None,
        *,
        name: str = "",
    ) -> int:
        """注册插件，返回可用于 unregister 的句柄

        phases 为空表示绑定全部阶段。
        """
        label = name or plugin_name(plugin)
        if not callable(getattr(plugin, "process", None)):
            raise ValidationError(f"插件 {label} 未实现 process()")

        schema = schema if schema is not None else getattr(plugin, "config_schema", None)
        if schema is not None:
            validate_config(config, schema, label)

        bound = frozenset(phases) if phases else frozenset(Phase)
        binding = PluginBinding(
            handle=next(self._handles), plugin=plugin,
            phases=bound, config=config, name=label,
        )
        self._bindings.append(binding)
        logger.info(
            "插件已注册: %s -> %s", label,
            ", ".join(p.name for p in Phase.ordered() if p in bound),
        )
        return binding.handle

    def unregister(self, handle: int) -> bool:
        for i, binding in enumerate(self._bindings):
            if binding.handle == handle:
                del self._bindings[i]
                logger.info("插件已注销: %s", binding.name)
                return True
        return False

    def bindings_for(self, phase: Phase) -> list[PluginBinding]:
        return [b for b in self._bindings if b.binds(phase)]

    def bindings(self) -> list[PluginBinding]:
        return list(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)
