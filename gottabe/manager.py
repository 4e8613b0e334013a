"""包管理器门面

插件通过 PluginContext.get_package_manager() 拿到的接口，
组合本地缓存、远程仓库客户端与打包器。
"""

from __future__ import annotations

import logging
from pathlib import Path

from gottabe.build.packager import PackagedArtifact, package_project
from gottabe.build.project import Project
from gottabe.cache.manager import PackageCacheManager
from gottabe.core.checksum import same_checksum
from gottabe.core.config import Config
from gottabe.core.models import PackageIdentity, PackageVariant, ResolvedPackage
from gottabe.repository.client import RemoteRepositoryClient, descriptor_checksum

logger = logging.getLogger(__name__)

UPDATE_VERIFIED = "verified"
UPDATE_REPLACED = "replaced"


class PackageManager:
    """包管理器"""

    def __init__(
        self,
        cache: PackageCacheManager,
        client: RemoteRepositoryClient,
        config: Config,
    ) -> None:
        self.cache = cache
        self.client = client
        self.config = config

    def _servers(self, servers: list[str] | None) -> list[str]:
        return list(servers) if servers is not None else list(self.config.servers)

    # ---- 缓存 ----

    def is_in_cache(self, variant: PackageVariant) -> bool:
        return self.cache.is_in_cache(variant)

    def load_package(self, variant: PackageVariant) -> ResolvedPackage:
        return self.cache.load_package(variant)

    # ---- 下载与更新 ----

    def download_package(
        self,
        identity: PackageIdentity,
        arch: str | None = None,
        platform: str | None = None,
        toolchain: str | None = None,
        servers: list[str] | None = None,
    ) -> ResolvedPackage:
        """确保变体在本地缓存中（已缓存则不访问网络）"""
        variant = PackageVariant(identity, arch, platform, toolchain)
        targets = self._servers(servers)
        return self.cache.materialize(
            variant,
            lambda: self.client.download_package(variant, targets, self.cache.staging_dir),
        )

    def update_package(
        self, identity: PackageIdentity, servers: list[str] | None = None,
    ) -> dict[PackageVariant, str]:
        """按服务器校验和刷新缓存中该标识的所有二进制变体

        返回:
            变体 -> "verified"（校验和一致，只刷新校验时间）
                   或 "replaced"（校验和不同，已重新下载替换）
        """
        targets = self._servers(servers)
        result: dict[PackageVariant, str] = {}
        for entry in self.cache.list_variants(identity):
            variant = entry.variant
            remote, server = self.client.fetch_checksum(variant, targets)
            if same_checksum(remote, entry.checksum):
                self.cache.touch(variant)
                result[variant] = UPDATE_VERIFIED
                logger.info("缓存校验通过: %s (%s)", variant, server)
                continue

            logger.warning(
                "缓存与服务器不一致，重新下载: %s (本地 %s, %s 上 %s)",
                variant, entry.checksum[:12], server, remote[:12],
            )
            downloaded = self.client.download_package(
                variant, targets, self.cache.staging_dir,
            )
            with self.cache.locked(variant):
                self.cache.store_download(downloaded)
            result[variant] = UPDATE_REPLACED
        if not result:
            logger.info("缓存中没有 %s 的二进制变体，无需更新", identity)
        return result

    # ---- 打包与发布 ----

    def package_project(self, project: Project) -> PackagedArtifact:
        return package_project(project)

    def publish_local(
        self, project: Project, artifact: PackagedArtifact | None = None,
    ) -> PackagedArtifact:
        """打包（如未打包）并存入本地仓库（即缓存目录）

        重复安装相同内容为空操作；本地重新构建出不同内容时替换旧变体。
        """
        artifact = artifact or self.package_project(project)
        written = self.cache.store_package(
            artifact.variant, artifact.descriptor, artifact.path, artifact.checksum,
            replace=True,
        )
        logger.info(
            "本地安装%s: %s -> %s", "" if written else "（内容未变）",
            artifact.variant, self.cache.root,
        )
        return artifact

    def publish(
        self,
        project: Project,
        artifact: PackagedArtifact | None = None,
        servers: list[str] | None = None,
    ) -> dict[str, bool]:
        """发布到每个服务器，返回 服务器 -> 是否实际上传"""
        artifact = artifact or self.package_project(project)
        if artifact.variant.is_agnostic:
            # 平台无关变体只发布描述文件，校验和取描述文件摘要
            package: Path | None = None
            checksum = descriptor_checksum(artifact.descriptor)
        else:
            package, checksum = artifact.path, artifact.checksum
        uploaded: dict[str, bool] = {}
        for server in self._servers(servers):
            uploaded[server] = self.client.publish(
                artifact.variant, artifact.descriptor, package, checksum,
                server, self.config.credentials_for(server),
            )
        return uploaded
