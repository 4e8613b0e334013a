"""仓库目录存储

本地缓存、本地仓库（publish_local）与仓库服务器共用的磁盘布局:

    <root>/<group>/<artifact>/<version>/descriptor.yml
    <root>/<group>/<artifact>/<version>/<variant>/package.tar.gz
    <root>/<group>/<artifact>/<version>/<variant>/checksum

<variant> 为 arch-platform-toolchain 或 any（平台无关，仅描述文件）。
写入一律先落到 <root>/.staging/ 下的临时目录，校验通过后整体 rename 到位，
读者永远看不到写了一半的变体目录。
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any

from gottabe.core.checksum import file_checksum, same_checksum, verify_file
from gottabe.core.exceptions import PublishError, ValidationError
from gottabe.core.models import AGNOSTIC_VARIANT_KEY, PackageIdentity, PackageVariant
from gottabe.utils.yaml_io import dump_yaml, load_yaml

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "descriptor.yml"
PACKAGE_FILE = "package.tar.gz"
CHECKSUM_FILE = "checksum"
STAGING_DIR = ".staging"

_SAFE_PART_RE = re.compile(r"^[A-Za-z0-9_.+\-]+$")


def validate_part(value: str, field: str) -> str:
    """校验路径片段仅包含安全字符，防止目录穿越"""
    value = str(value).strip()
    if not _SAFE_PART_RE.match(value) or value in (".", ".."):
        raise ValidationError(f"参数 '{field}' 包含非法字符: {value}")
    return value


def _promote_dir(staged: Path, target: Path) -> None:
    """将暂存目录原子地替换到目标位置"""
    target.parent.mkdir(parents=True, exist_ok=True)
    backup: Path | None = None
    if target.exists():
        backup = target.with_name(f".{target.name}.old-{uuid.uuid4().hex[:8]}")
        os.replace(target, backup)
    os.replace(staged, target)
    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)


class RepositoryStore:
    """基于目录的包仓库"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    # ---- 路径 ----

    def identity_dir(self, identity: PackageIdentity) -> Path:
        return (
            self.root
            / validate_part(identity.group_id, "groupId")
            / validate_part(identity.artifact_id, "artifactId")
            / validate_part(identity.version, "version")
        )

    def variant_dir(self, variant: PackageVariant) -> Path:
        return self.identity_dir(variant.identity) / validate_part(variant.key, "variant")

    def descriptor_path(self, identity: PackageIdentity) -> Path:
        return self.identity_dir(identity) / DESCRIPTOR_FILE

    def package_path(self, variant: PackageVariant) -> Path:
        return self.variant_dir(variant) / PACKAGE_FILE

    def staging_dir(self) -> Path:
        """返回一个新的暂存目录（与仓库同文件系统，保证 rename 原子）"""
        base = self.root / STAGING_DIR
        base.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(dir=str(base)))

    # ---- 查询 ----

    def has_descriptor(self, identity: PackageIdentity) -> bool:
        return self.descriptor_path(identity).is_file()

    def has_variant(self, variant: PackageVariant) -> bool:
        if variant.is_agnostic:
            return self.has_descriptor(variant.identity)
        return (self.variant_dir(variant) / CHECKSUM_FILE).is_file()

    def read_descriptor(self, identity: PackageIdentity) -> dict[str, Any]:
        return load_yaml(self.descriptor_path(identity))

    def read_checksum(self, variant: PackageVariant) -> str | None:
        """读取变体校验和；平台无关变体的校验和即描述文件的摘要"""
        if variant.is_agnostic:
            path = self.descriptor_path(variant.identity)
            return file_checksum(path) if path.is_file() else None
        path = self.variant_dir(variant) / CHECKSUM_FILE
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8").strip()

    def list_versions(self, group_id: str, artifact_id: str) -> list[str]:
        base = (
            self.root
            / validate_part(group_id, "groupId")
            / validate_part(artifact_id, "artifactId")
        )
        if not base.is_dir():
            return []
        return sorted(
            d.name for d in base.iterdir()
            if d.is_dir() and (d / DESCRIPTOR_FILE).is_file()
        )

    def list_variant_keys(self, identity: PackageIdentity) -> list[str]:
        base = self.identity_dir(identity)
        if not base.is_dir():
            return []
        return sorted(
            d.name for d in base.iterdir()
            if d.is_dir() and (d / CHECKSUM_FILE).is_file()
            and d.name != AGNOSTIC_VARIANT_KEY
        )

    # ---- 写入 ----

    def put_descriptor(self, identity: PackageIdentity, descriptor: dict[str, Any]) -> None:
        """写入描述文件（内容相同则跳过）"""
        path = self.descriptor_path(identity)
        content = dump_yaml(descriptor)
        if path.is_file() and path.read_text(encoding="utf-8") == content:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def put(
        self,
        variant: PackageVariant,
        descriptor: dict[str, Any],
        package: Path | None,
        checksum: str,
        *,
        replace: bool = False,
    ) -> bool:
        """存入一个变体，返回是否实际写入

        - 已存在且校验和相同: 幂等，不写入
        - 已存在且校验和不同: replace=True 时整体替换，否则抛 PublishError
        - package 文件在 rename 到位前按 checksum 校验
        """
        if variant.is_agnostic:
            self.put_descriptor(variant.identity, descriptor)
            return True

        existing = self.read_checksum(variant)
        if existing is not None and same_checksum(existing, checksum):
            logger.info("变体已存在且内容一致，跳过: %s", variant)
            self.put_descriptor(variant.identity, descriptor)
            return False
        if existing is not None and not replace:
            raise PublishError(
                f"变体 {variant} 已存在且校验和不同 (现有 {existing}, 新 {checksum})"
            )
        if package is None or not package.is_file():
            raise ValidationError(f"变体 {variant} 缺少包文件")

        verify_file(package, checksum)

        staged = self.staging_dir()
        try:
            shutil.copy2(package, staged / PACKAGE_FILE)
            (staged / CHECKSUM_FILE).write_text(checksum, encoding="utf-8")
            self.put_descriptor(variant.identity, descriptor)
            _promote_dir(staged, self.variant_dir(variant))
        except Exception:
            shutil.rmtree(staged, ignore_errors=True)
            raise
        logger.info("变体已写入仓库: %s -> %s", variant, self.variant_dir(variant))
        return True

    def promote_staged(
        self,
        variant: PackageVariant,
        staged: Path,
        checksum: str,
    ) -> None:
        """将调用方已写好 package.tar.gz 的暂存目录校验后原子落位"""
        verify_file(staged / PACKAGE_FILE, checksum)
        (staged / CHECKSUM_FILE).write_text(checksum, encoding="utf-8")
        _promote_dir(staged, self.variant_dir(variant))

    def remove_variant(self, variant: PackageVariant) -> bool:
        path = self.variant_dir(variant)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True
