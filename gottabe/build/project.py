"""构建项目：描述文件 + 目录布局 + 当前目标"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gottabe.core.descriptor import DEFAULT_DESCRIPTOR, load_descriptor
from gottabe.core.exceptions import ConfigError
from gottabe.core.models import BuildDescriptor, PackageVariant, TargetConfig

DEPENDENCY_DIR = "deps"
DIST_DIR = "dist"


@dataclass
class Project:
    """一次构建面向的项目"""

    descriptor: BuildDescriptor
    base_dir: Path
    build_dir: Path
    target: TargetConfig | None = None

    @property
    def dependency_dir(self) -> Path:
        return self.build_dir / DEPENDENCY_DIR

    @property
    def dist_dir(self) -> Path:
        return self.build_dir / DIST_DIR

    @property
    def output_dir(self) -> Path:
        """当前目标的构建产出目录（编译/链接插件写入此处）"""
        return self.build_dir / (self.target.name if self.target else "default")

    @property
    def package_name(self) -> str:
        return self.descriptor.package.name or self.descriptor.artifact_id

    def variant(self) -> PackageVariant:
        """当前目标对应的包变体；没有目标时为平台无关变体"""
        if self.target is None:
            return PackageVariant(self.descriptor.identity)
        return PackageVariant(
            self.descriptor.identity,
            self.target.arch, self.target.platform, self.target.toolchain,
        )

    @classmethod
    def load(
        cls,
        descriptor_path: str | Path = DEFAULT_DESCRIPTOR,
        *,
        build_dir: str | Path = "build",
        target_name: str | None = None,
        arch: str | None = None,
        platform: str | None = None,
    ) -> Project:
        """加载 build.yml 并选择目标

        目标按名称查找；未指定名称时按 arch/platform 匹配，否则取第一个目标。
        """
        path = Path(descriptor_path)
        desc = load_descriptor(path)
        base_dir = path.parent.resolve()
        build = Path(build_dir)
        if not build.is_absolute():
            build = base_dir / build
        return cls(
            descriptor=desc, base_dir=base_dir, build_dir=build,
            target=select_target(desc, target_name, arch, platform),
        )


def select_target(
    desc: BuildDescriptor,
    name: str | None,
    arch: str | None = None,
    platform: str | None = None,
) -> TargetConfig | None:
    if name:
        target = desc.find_target(name)
        if target is None:
            raise ConfigError(
                f"构建描述中没有目标 '{name}'，可用: {[t.name for t in desc.targets]}"
            )
        return target
    for t in desc.targets:
        if (arch is None or t.arch == arch) and (platform is None or t.platform == platform):
            return t
    if arch or platform:
        raise ConfigError(f"没有匹配 arch={arch} platform={platform} 的目标")
    return desc.find_target(None)
