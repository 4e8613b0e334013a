"""包缓存管理

职责:
- 本地缓存查询（精确变体；平台无关变体只要求元信息存在）
- 从缓存加载 ResolvedPackage，绝不触发下载
- 按变体加锁落地（线程锁 + portalocker 跨进程锁文件），锁内复查缓存
- 缓存条目 entry.yml 记录最后校验时间

缓存目录与仓库服务器共用 RepositoryStore 的磁盘布局，同时充当本地仓库。
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

import portalocker

from gottabe.core.descriptor import descriptor_from_dict
from gottabe.core.exceptions import NotInCacheError
from gottabe.core.models import (
    BuildDescriptor,
    CacheEntry,
    PackageIdentity,
    PackageVariant,
    ResolvedPackage,
)
from gottabe.repository.client import DownloadedPackage
from gottabe.repository.store import RepositoryStore, validate_part
from gottabe.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

ENTRY_FILE = "entry.yml"
LOCK_DIR = ".locks"

FetchFn = Callable[[], DownloadedPackage]


class PackageCacheManager:
    """本地包缓存"""

    def __init__(self, root: str | Path) -> None:
        self.store = RepositoryStore(root)
        self._locks: dict[PackageVariant, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def root(self) -> Path:
        return self.store.root

    # ---- 锁 ----

    def _thread_lock(self, variant: PackageVariant) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(variant)
            if lock is None:
                lock = threading.Lock()
                self._locks[variant] = lock
            return lock

    def _lock_file(self, variant: PackageVariant) -> Path:
        ident = variant.identity
        name = "__".join((
            validate_part(ident.group_id, "groupId"),
            validate_part(ident.artifact_id, "artifactId"),
            validate_part(ident.version, "version"),
            variant.key,
        ))
        return self.root / LOCK_DIR / f"{name}.lock"

    @contextmanager
    def locked(self, variant: PackageVariant) -> Iterator[None]:
        """持有变体的进程内锁与跨进程文件锁"""
        with self._thread_lock(variant):
            path = self._lock_file(variant)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                portalocker.lock(f, portalocker.LOCK_EX)
                try:
                    yield
                finally:
                    portalocker.unlock(f)

    # ---- 查询 ----

    def is_in_cache(self, variant: PackageVariant) -> bool:
        return self.store.has_variant(variant)

    def load_descriptor(self, identity: PackageIdentity) -> BuildDescriptor | None:
        """仅元信息查询，缓存中没有时返回 None"""
        if not self.store.has_descriptor(identity):
            return None
        return descriptor_from_dict(
            self.store.read_descriptor(identity),
            source=str(self.store.descriptor_path(identity)),
        )

    def load_package(self, variant: PackageVariant) -> ResolvedPackage:
        """从缓存加载变体，不在缓存中抛 NotInCacheError"""
        if not self.is_in_cache(variant):
            raise NotInCacheError(f"缓存中没有 {variant}")
        desc = self.load_descriptor(variant.identity)
        if desc is None:
            raise NotInCacheError(f"缓存中缺少 {variant.identity} 的描述文件")
        location = (
            self.store.identity_dir(variant.identity)
            if variant.is_agnostic else self.store.variant_dir(variant)
        )
        return ResolvedPackage(
            variant=variant,
            checksum=self.store.read_checksum(variant) or "",
            location=location,
            dependencies=list(desc.dependencies),
            descriptor=desc,
        )

    def _entry_path(self, variant: PackageVariant) -> Path:
        if variant.is_agnostic:
            return self.store.identity_dir(variant.identity) / f"{variant.key}.{ENTRY_FILE}"
        return self.store.variant_dir(variant) / ENTRY_FILE

    def entry(self, variant: PackageVariant) -> CacheEntry | None:
        if not self.is_in_cache(variant):
            return None
        data = load_yaml(self._entry_path(variant))
        path = (
            self.store.identity_dir(variant.identity)
            if variant.is_agnostic else self.store.variant_dir(variant)
        )
        return CacheEntry(
            variant=variant,
            path=path,
            checksum=self.store.read_checksum(variant) or "",
            last_verified=float(data.get("last_verified", 0.0)),
        )

    def list_variants(self, identity: PackageIdentity) -> list[CacheEntry]:
        """列出缓存中该标识的所有二进制变体"""
        entries = []
        for key in self.store.list_variant_keys(identity):
            data = load_yaml(self.store.identity_dir(identity) / key / ENTRY_FILE)
            if data.get("arch") or data.get("platform") or data.get("toolchain"):
                parts = [data.get("arch"), data.get("platform"), data.get("toolchain")]
            else:
                # 没有条目文件（如服务器端目录），按目录名还原
                parts = key.split("-", 2)
                if len(parts) != 3:
                    logger.warning("跳过无法识别的变体目录: %s/%s", identity, key)
                    continue
            arch, platform, toolchain = (None if p in (None, "none") else p for p in parts)
            entry = self.entry(PackageVariant(identity, arch, platform, toolchain))
            if entry is not None:
                entries.append(entry)
        return entries

    # ---- 写入 ----

    def staging_dir(self) -> Path:
        return self.store.staging_dir()

    def touch(self, variant: PackageVariant) -> None:
        """更新最后校验时间"""
        save_yaml(self._entry_path(variant), {
            "variant": str(variant),
            "arch": variant.arch,
            "platform": variant.platform,
            "toolchain": variant.toolchain,
            "last_verified": time.time(),
        })

    def store_download(self, downloaded: DownloadedPackage) -> None:
        """将已校验的下载结果落地（整体替换旧变体）"""
        variant = downloaded.variant
        staged = downloaded.staged_dir
        try:
            self.store.put_descriptor(variant.identity, downloaded.descriptor)
            if staged is not None:
                self.store.promote_staged(variant, staged, downloaded.checksum)
        except Exception:
            if staged is not None:
                shutil.rmtree(staged, ignore_errors=True)
            raise
        self.touch(variant)
        logger.info("已缓存: %s", variant)

    def store_package(
        self,
        variant: PackageVariant,
        descriptor: dict,
        package: Path | None,
        checksum: str,
        *,
        replace: bool = False,
    ) -> bool:
        """存入本地构建出的包，返回是否实际写入（相同校验和时幂等）"""
        with self.locked(variant):
            written = self.store.put(variant, descriptor, package, checksum, replace=replace)
            self.touch(variant)
        return written

    def invalidate(self, variant: PackageVariant) -> bool:
        with self.locked(variant):
            removed = self.store.remove_variant(variant)
        if removed:
            logger.info("缓存条目已失效: %s", variant)
        return removed

    def materialize(self, variant: PackageVariant, fetch: FetchFn) -> ResolvedPackage:
        """确保变体在缓存中并返回之

        同一变体的并发调用只会执行一次 fetch：后进入锁的调用者复查缓存后直接命中。
        """
        with self.locked(variant):
            if self.is_in_cache(variant):
                logger.debug("缓存命中: %s", variant)
            else:
                self.store_download(fetch())
        return self.load_package(variant)
