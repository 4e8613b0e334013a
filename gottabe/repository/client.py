"""远程仓库客户端

职责:
- 按顺序在服务器列表中查找并下载包变体（先成功者胜出，不并发竞速，不重试失败的服务器）
- 单服务器超时视为该服务器失败；每个包跨所有服务器、所有传输调用有总等待预算
- 下载内容按服务器校验和验证，不一致时重下一次，第二次仍不一致即致命错误
- 发布（幂等：服务器已有相同校验和时不重复上传）
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

from gottabe.core.cancel import CancellationToken
from gottabe.core.checksum import bytes_checksum, file_checksum, same_checksum
from gottabe.core.config import Credentials
from gottabe.core.exceptions import (
    ChecksumMismatchError,
    PackageNotFoundError,
    PublishError,
    ValidationError,
)
from gottabe.core.models import PackageIdentity, PackageVariant
from gottabe.repository.store import PACKAGE_FILE
from gottabe.repository.transport import (
    HttpTransport,
    NotOnServer,
    RepositoryTransport,
    ServerRefused,
    ServerUnavailable,
)
from gottabe.utils.yaml_io import dump_yaml

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DownloadedPackage:
    """下载结果：已校验的暂存目录（平台无关变体无暂存目录）"""

    variant: PackageVariant
    server: str
    descriptor: dict[str, Any]
    checksum: str
    staged_dir: Path | None = None


class AttemptBudget:
    """单次服务器尝试的剩余等待时间

    每次传输调用前取一次，得到本次调用的超时；耗尽时抛 ServerUnavailable，
    即该服务器失败。
    """

    def __init__(self, seconds: float) -> None:
        self.deadline = time.monotonic() + seconds

    def __call__(self) -> float:
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise ServerUnavailable("超出等待预算")
        return remaining


def descriptor_checksum(descriptor: dict[str, Any]) -> str:
    """平台无关变体的校验和：序列化后描述文件的摘要"""
    return bytes_checksum(dump_yaml(descriptor).encode("utf-8"))


class RemoteRepositoryClient:
    """远程仓库客户端"""

    def __init__(
        self,
        transport: RepositoryTransport | None = None,
        *,
        server_timeout: float = 30.0,
        package_timeout: float = 300.0,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.transport = transport or HttpTransport()
        self.server_timeout = server_timeout
        self.package_timeout = package_timeout
        self.cancel = cancel or CancellationToken()

    def _first_success(
        self,
        servers: list[str],
        label: str,
        action: Callable[[str, AttemptBudget], T],
    ) -> tuple[str, T]:
        """按顺序尝试服务器，返回 (server, 结果)

        action 每次传输调用前从 budget 取超时，一次尝试的全部调用共用
        min(单服务器超时, 剩余总预算)。NotOnServer / ServerUnavailable（含拒绝读取
        与预算耗尽）视为该服务器失败，继续下一个；
        其他异常（如 ChecksumMismatchError）直接上抛。
        """
        if not servers:
            raise PackageNotFoundError(f"{label}: 未配置任何仓库服务器")

        deadline = time.monotonic() + self.package_timeout
        attempted: list[str] = []
        failures: list[str] = []
        for server in servers:
            self.cancel.check(f"下载 {label}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                failures.append(f"超出总等待预算 {self.package_timeout:.0f}s")
                break
            attempted.append(server)
            budget = AttemptBudget(min(self.server_timeout, remaining))
            try:
                return server, action(server, budget)
            except NotOnServer:
                logger.info("  %s 上不存在 %s", server, label)
                failures.append(f"{server}: 不存在")
            except ServerUnavailable as e:
                logger.warning("  服务器不可用 %s: %s", server, e)
                failures.append(f"{server}: {e}")

        raise PackageNotFoundError(
            f"{label} 在所有服务器上均不可用 ({'; '.join(failures)})",
            servers=attempted,
        )

    # ---- 查询 ----

    def fetch_descriptor(
        self, identity: PackageIdentity, servers: list[str],
    ) -> tuple[dict[str, Any], str]:
        """获取包描述文件（仅元信息），返回 (描述, 来源服务器)"""
        server, desc = self._first_success(
            servers, str(identity),
            lambda s, t: self.transport.fetch_descriptor(s, identity, timeout=t()),
        )
        return desc, server

    def fetch_checksum(
        self, variant: PackageVariant, servers: list[str],
    ) -> tuple[str, str]:
        """获取第一个应答服务器上的变体校验和，返回 (校验和, 来源服务器)"""
        server, checksum = self._first_success(
            servers, str(variant),
            lambda s, t: self.transport.fetch_checksum(s, variant, timeout=t()),
        )
        return checksum, server

    # ---- 下载 ----

    def download_package(
        self,
        variant: PackageVariant,
        servers: list[str],
        staging: Callable[[], Path],
    ) -> DownloadedPackage:
        """下载变体到暂存目录并完成校验

        参数:
            variant: 目标变体（平台无关变体只取描述文件）
            servers: 有序服务器列表
            staging: 返回新暂存目录的工厂（由缓存提供，保证与缓存同文件系统）
        """
        if variant.is_agnostic:
            desc, server = self.fetch_descriptor(variant.identity, servers)
            return DownloadedPackage(
                variant=variant, server=server, descriptor=desc,
                checksum=descriptor_checksum(desc),
            )

        def _fetch(server: str, budget: AttemptBudget) -> DownloadedPackage:
            expected = self.transport.fetch_checksum(server, variant, timeout=budget())
            staged = staging()
            try:
                dest = staged / PACKAGE_FILE
                for attempt in (1, 2):
                    self.cancel.check(f"下载 {variant}")
                    self.transport.fetch_package(server, variant, dest, timeout=budget())
                    actual = file_checksum(dest)
                    if same_checksum(actual, expected):
                        break
                    if attempt == 2:
                        raise ChecksumMismatchError(
                            f"{variant} 重新下载后校验和仍不一致 "
                            f"(服务器 {server}: 期望 {expected}, 实际 {actual})"
                        )
                    logger.warning("校验和不匹配，重新下载一次: %s (%s)", variant, server)
                desc = self.transport.fetch_descriptor(
                    server, variant.identity, timeout=budget(),
                )
            except BaseException:
                shutil.rmtree(staged, ignore_errors=True)
                raise
            return DownloadedPackage(
                variant=variant, server=server, descriptor=desc,
                checksum=expected, staged_dir=staged,
            )

        logger.info("远程下载: %s", variant)
        _, result = self._first_success(servers, str(variant), _fetch)
        logger.info("下载完成: %s <- %s", variant, result.server)
        return result

    # ---- 发布 ----

    def publish(
        self,
        variant: PackageVariant,
        descriptor: dict[str, Any],
        package: Path | None,
        checksum: str,
        server: str,
        credentials: Credentials | None,
    ) -> bool:
        """发布变体到服务器，返回是否实际上传（已存在相同内容时为 False）"""
        if credentials is None or not credentials.username:
            raise ValidationError(f"发布到远程服务器 {server} 需要提供用户名和密码")

        self.cancel.check(f"发布 {variant}")
        try:
            remote = self.transport.fetch_checksum(
                server, variant, timeout=self.server_timeout,
            )
        except NotOnServer:
            remote = None
        except ServerRefused as e:
            raise PublishError(f"发布失败，服务器拒绝访问: {server} - {e}") from e
        except ServerUnavailable as e:
            raise PublishError(f"发布失败，服务器不可用: {server} - {e}") from e

        if remote is not None:
            if same_checksum(remote, checksum):
                logger.info("服务器已有相同内容，跳过发布: %s -> %s", variant, server)
                return False
            raise PublishError(
                f"{variant} 已发布到 {server} 且内容不同 (服务器 {remote}, 本地 {checksum})"
            )

        try:
            self.transport.upload(
                server, variant, descriptor, package, checksum,
                credentials=credentials, timeout=self.server_timeout,
            )
        except (ServerUnavailable, NotOnServer) as e:
            raise PublishError(f"发布失败: {variant} -> {server} - {e}") from e
        logger.info("已发布: %s -> %s", variant, server)
        return True
