"""构建描述文件加载

职责:
- 解析依赖坐标字符串 group/artifact[@version][:scope[,scope]]
- 从 YAML (build.yml) 加载 BuildDescriptor，格式错误统一抛 ConfigError
- 将 BuildDescriptor 序列化回字典（打包与发布时随包携带）
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from gottabe.core.exceptions import ConfigError
from gottabe.core.models import (
    ARTIFACT_TYPES,
    BuildDescriptor,
    Dependency,
    PackageConfig,
    PackageIdentity,
    Phase,
    PluginConfig,
    Scope,
    TargetConfig,
)
from gottabe.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTOR = "build.yml"

_COORD_RE = re.compile(
    r"^(?P<group>[A-Za-z0-9_.\-]+)/(?P<artifact>[A-Za-z0-9_.\-]+)"
    r"(?:@(?P<version>[A-Za-z0-9_.+\-]+))?"
    r"(?::(?P<scopes>[a-z,]+))?$"
)


def parse_coordinate(spec: str, *, require_version: bool = True) -> Dependency:
    """解析 group/artifact[@version][:scope[,scope]]

    作用域缺省为 compile；多个作用域以逗号分隔取并集。
    """
    m = _COORD_RE.match(str(spec).strip())
    if m is None:
        raise ConfigError(
            f"非法的包坐标 '{spec}'，格式应为 group/artifact[@version][:scope]"
        )
    version = m.group("version") or ""
    if require_version and not version:
        raise ConfigError(f"依赖 '{spec}' 未声明版本")

    scopes: set[Scope] = set()
    for name in (m.group("scopes") or "compile").split(","):
        if not name:
            continue
        try:
            scopes.add(Scope(name))
        except ValueError:
            raise ConfigError(
                f"依赖 '{spec}' 的作用域 '{name}' 无效，"
                f"可用: {[s.value for s in Scope]}"
            ) from None
    if not scopes:
        scopes.add(Scope.COMPILE)

    identity = PackageIdentity(m.group("group"), m.group("artifact"), version)
    return Dependency(identity=identity, scopes=frozenset(scopes))


def _str_list(data: dict[str, Any], key: str, where: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ConfigError(f"{where}: '{key}' 必须是列表")
    return [str(v) for v in value]


def _parse_phases(raw: Any, where: str) -> list[Phase]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{where}: 'phases' 必须是列表")
    try:
        return [Phase.parse(p) for p in raw]
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def _parse_plugins(raw: Any, where: str) -> list[PluginConfig]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{where}: 'plugins' 必须是列表")
    plugins = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("package"):
            raise ConfigError(f"{where}: 插件声明缺少 'package'")
        # 只校验坐标格式，插件允许省略版本
        parse_coordinate(item["package"], require_version=False)
        plugins.append(PluginConfig(
            package=str(item["package"]),
            phases=_parse_phases(item.get("phases"), f"{where} 插件 {item['package']}"),
            config=item.get("config"),
            main=str(item.get("main", "")),
        ))
    return plugins


def _parse_target(raw: Any, where: str) -> TargetConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: 目标必须是字典")
    missing = [k for k in ("name", "arch", "platform", "toolchain") if not raw.get(k)]
    if missing:
        raise ConfigError(f"{where}: 目标缺少字段 {missing}")
    label = f"{where} 目标 {raw['name']}"
    return TargetConfig(
        name=str(raw["name"]),
        arch=str(raw["arch"]),
        platform=str(raw["platform"]),
        toolchain=str(raw["toolchain"]),
        plugins=_parse_plugins(raw.get("plugins"), label),
        include_dirs=_str_list(raw, "includeDirs", label),
        sources=_str_list(raw, "sources", label),
        options=dict(raw.get("options") or {}),
        defines=dict(raw.get("defines") or {}),
        library_paths=_str_list(raw, "libraryPaths", label),
        libraries=_str_list(raw, "libraries", label),
        link_options=dict(raw.get("linkOptions") or {}),
    )


def descriptor_from_dict(data: dict[str, Any], *, source: str = "<dict>") -> BuildDescriptor:
    """从字典构造 BuildDescriptor（字段命名沿用 build.yml 的 camelCase）"""
    missing = [k for k in ("groupId", "artifactId", "version") if not data.get(k)]
    if missing:
        raise ConfigError(f"{source}: 缺少必填字段 {missing}")

    art_type = str(data.get("type", "none"))
    if art_type not in ARTIFACT_TYPES:
        raise ConfigError(
            f"{source}: 未知的产物类型 '{art_type}'，可用: {sorted(ARTIFACT_TYPES)}"
        )

    deps = [parse_coordinate(d) for d in _str_list(data, "dependencies", source)]

    pkg_raw = data.get("package") or {}
    if not isinstance(pkg_raw, dict):
        raise ConfigError(f"{source}: 'package' 必须是字典")

    return BuildDescriptor(
        group_id=str(data["groupId"]),
        artifact_id=str(data["artifactId"]),
        version=str(data["version"]),
        type=art_type,
        description=str(data.get("description", "")),
        author=str(data.get("author", "")),
        source_url=str(data.get("sourceUrl", "")),
        issue_url=str(data.get("issueUrl", "")),
        documentation_url=str(data.get("documentationUrl", "")),
        license=str(data.get("license", "")),
        dependencies=deps,
        include_dirs=_str_list(data, "includeDirs", source),
        sources=_str_list(data, "sources", source),
        test_sources=_str_list(data, "testSources", source),
        targets=[_parse_target(t, source) for t in (data.get("targets") or [])],
        plugins=_parse_plugins(data.get("plugins"), source),
        package=PackageConfig(
            name=str(pkg_raw.get("name", "")),
            includes=_str_list(pkg_raw, "includes", source),
            other=_str_list(pkg_raw, "other", source),
        ),
        modules=[
            descriptor_from_dict(m, source=f"{source} 子模块")
            for m in (data.get("modules") or [])
        ],
    )


def load_descriptor(path: str | Path) -> BuildDescriptor:
    """加载 build.yml，文件缺失或格式错误时抛 ConfigError"""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"构建描述文件不存在: {p}")
    try:
        data = load_yaml(p)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"构建描述文件无法解析: {p} - {e}") from e
    if not data:
        raise ConfigError(f"构建描述文件为空: {p}")
    desc = descriptor_from_dict(data, source=str(p))
    logger.info("已加载构建描述: %s (%d 个依赖)", desc.identity, len(desc.dependencies))
    return desc


def _dependency_to_str(dep: Dependency) -> str:
    scopes = ",".join(sorted(s.value for s in dep.scopes))
    return f"{dep.identity}:{scopes}"


def descriptor_to_dict(desc: BuildDescriptor) -> dict[str, Any]:
    """序列化为 build.yml 结构，只输出非空字段"""
    data: dict[str, Any] = {
        "groupId": desc.group_id,
        "artifactId": desc.artifact_id,
        "version": desc.version,
        "type": desc.type,
    }
    for key, value in (
        ("description", desc.description),
        ("author", desc.author),
        ("sourceUrl", desc.source_url),
        ("issueUrl", desc.issue_url),
        ("documentationUrl", desc.documentation_url),
        ("license", desc.license),
    ):
        if value:
            data[key] = value
    if desc.dependencies:
        data["dependencies"] = [_dependency_to_str(d) for d in desc.dependencies]
    if desc.include_dirs:
        data["includeDirs"] = list(desc.include_dirs)
    if desc.targets:
        data["targets"] = [
            {
                "name": t.name, "arch": t.arch,
                "platform": t.platform, "toolchain": t.toolchain,
            }
            for t in desc.targets
        ]
    return data
