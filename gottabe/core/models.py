"""核心数据模型

所有核心数据类集中定义：包坐标、变体、依赖、构建描述、命令选项。
其他模块统一从此处导入，消除 resolver ↔ cache ↔ orchestrator 的循环依赖。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

# =========================================================================
# 阶段与作用域
# =========================================================================


class Phase(Enum):
    """构建阶段，严格全序"""

    CLEAN = 0
    RESOLVE_DEPENDENCIES = 1
    COMPILE = 2
    LINK = 3
    TEST = 4
    PACKAGE = 5
    INSTALL = 6

    @classmethod
    def ordered(cls) -> list[Phase]:
        return sorted(cls, key=lambda p: p.value)

    @classmethod
    def parse(cls, name: str) -> Phase:
        """按名称（大小写不敏感）解析阶段，未知名称抛 ValueError"""
        key = str(name).strip().upper()
        try:
            return cls[key]
        except KeyError:
            raise ValueError(
                f"未知的构建阶段: {name}，可用: {[p.name for p in cls]}"
            ) from None


class Scope(str, Enum):
    """依赖作用域"""

    COMPILE = "compile"
    TEST = "test"
    RUNTIME = "runtime"
    SHALLOW = "shallow"


ALL_SCOPES: frozenset[Scope] = frozenset(Scope)

ARTIFACT_TYPES = frozenset((
    "executable",
    "shared_library",
    "static library",
    "driver",
    "none",
))

AGNOSTIC_VARIANT_KEY = "any"


# =========================================================================
# 包坐标与变体
# =========================================================================


@dataclass(frozen=True)
class PackageIdentity:
    """包标识 (groupId, artifactId, version)，值相等"""

    group_id: str
    artifact_id: str
    version: str

    @property
    def coordinate(self) -> str:
        """不含版本的坐标 group/artifact，用于去重"""
        return f"{self.group_id}/{self.artifact_id}"

    def __str__(self) -> str:
        return f"{self.coordinate}@{self.version}"


@dataclass(frozen=True)
class PackageVariant:
    """包变体：标识 + (arch, platform, toolchain)

    三者均为 None 表示平台无关变体（仅元信息）。
    """

    identity: PackageIdentity
    arch: str | None = None
    platform: str | None = None
    toolchain: str | None = None

    @property
    def is_agnostic(self) -> bool:
        return self.arch is None and self.platform is None and self.toolchain is None

    @property
    def key(self) -> str:
        """变体目录名 / URL 片段: arch-platform-toolchain 或 any"""
        if self.is_agnostic:
            return AGNOSTIC_VARIANT_KEY
        return "-".join(p or "none" for p in (self.arch, self.platform, self.toolchain))

    def agnostic(self) -> PackageVariant:
        return PackageVariant(self.identity)

    def __str__(self) -> str:
        return f"{self.identity}[{self.key}]"


@dataclass(frozen=True)
class Dependency:
    """依赖声明：标识 + 非空作用域集合"""

    identity: PackageIdentity
    scopes: frozenset[Scope] = frozenset({Scope.COMPILE})

    def __str__(self) -> str:
        names = ",".join(sorted(s.value for s in self.scopes))
        return f"{self.identity}:{names}"


# =========================================================================
# 构建描述（来自 build.yml）
# =========================================================================


@dataclass
class PluginConfig:
    """构建描述中的插件声明"""

    package: str
    phases: list[Phase] = field(default_factory=list)
    config: Any = None
    main: str = ""  # "module:Class"，为空时走 entry point


@dataclass
class TargetConfig:
    """构建目标（一个 arch/platform/toolchain 组合）"""

    name: str
    arch: str
    platform: str
    toolchain: str
    plugins: list[PluginConfig] = field(default_factory=list)
    include_dirs: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    defines: dict[str, Any] = field(default_factory=dict)
    library_paths: list[str] = field(default_factory=list)
    libraries: list[str] = field(default_factory=list)
    link_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class PackageConfig:
    """打包配置"""

    name: str = ""
    includes: list[str] = field(default_factory=list)
    other: list[str] = field(default_factory=list)


@dataclass
class BuildDescriptor:
    """构建描述文件"""

    group_id: str
    artifact_id: str
    version: str
    type: str = "none"
    description: str = ""
    author: str = ""
    source_url: str = ""
    issue_url: str = ""
    documentation_url: str = ""
    license: str = ""
    dependencies: list[Dependency] = field(default_factory=list)
    include_dirs: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    test_sources: list[str] = field(default_factory=list)
    targets: list[TargetConfig] = field(default_factory=list)
    plugins: list[PluginConfig] = field(default_factory=list)
    package: PackageConfig = field(default_factory=PackageConfig)
    modules: list[BuildDescriptor] = field(default_factory=list)

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(self.group_id, self.artifact_id, self.version)

    def find_target(self, name: str | None) -> TargetConfig | None:
        """按名称查找目标，name 为空时返回第一个目标"""
        if not self.targets:
            return None
        if not name:
            return self.targets[0]
        for t in self.targets:
            if t.name == name:
                return t
        return None


# =========================================================================
# 解析结果与缓存条目
# =========================================================================


@dataclass
class ResolvedPackage:
    """已在本地落地的包变体"""

    variant: PackageVariant
    checksum: str
    location: Path
    dependencies: list[Dependency] = field(default_factory=list)
    descriptor: BuildDescriptor | None = None
    scopes: frozenset[Scope] = frozenset()

    @property
    def identity(self) -> PackageIdentity:
        return self.variant.identity


@dataclass
class CacheEntry:
    """缓存条目：变体 → (存储路径, 校验和, 最后校验时间)"""

    variant: PackageVariant
    path: Path
    checksum: str
    last_verified: float = 0.0


# =========================================================================
# 命令选项
# =========================================================================


@dataclass
class CommandOptions:
    """命令行选项（由 CLI 解析后传入）"""

    clean: bool = False
    build: bool = False
    package: bool = False
    install: bool = False
    test: bool = False
    publish: bool = False
    arch: str | None = None
    platform: str | None = None
    target: str | None = None
    all: bool = False
    settings_file: str | None = None
    no_tests: bool = False

    def final_phase(self) -> Phase:
        """根据任务开关确定本次运行的最后一个阶段"""
        if self.install or self.publish:
            return Phase.INSTALL
        if self.package:
            return Phase.PACKAGE
        if self.test:
            return Phase.TEST
        if self.build:
            return Phase.LINK
        return Phase.CLEAN

    def scope_filter(self) -> frozenset[Scope]:
        """构建意图对应的作用域过滤：仅测试构建包含 test 作用域"""
        if self.test and not self.no_tests:
            return ALL_SCOPES
        return ALL_SCOPES - {Scope.TEST}
