"""仓库传输层

通过 RepositoryTransport 协议抽象与仓库服务器的交互，方便测试替换。
默认实现 HttpTransport 基于 urllib，对接 gottabe 仓库服务器的 HTTP 布局:

    GET  /api/packages/<g>/<a>/<v>/descriptor
    PUT  /api/packages/<g>/<a>/<v>/descriptor
    GET  /api/packages/<g>/<a>/<v>/<variant>/checksum
    GET  /api/packages/<g>/<a>/<v>/<variant>/package
    PUT  /api/packages/<g>/<a>/<v>/<variant>        (请求体为包内容, X-Checksum 头)
"""

from __future__ import annotations

import base64
import logging
import shutil
import socket
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Protocol

import yaml

from gottabe.core.config import Credentials
from gottabe.core.exceptions import PublishError
from gottabe.core.models import PackageIdentity, PackageVariant
from gottabe.utils.net import join_url, validate_url_scheme
from gottabe.utils.yaml_io import dump_yaml, parse_yaml

logger = logging.getLogger(__name__)


class ServerUnavailable(ConnectionError):
    """服务器不可达、超时或返回 5xx"""


class NotOnServer(LookupError):
    """服务器可达但没有请求的资源 (404)"""


class ServerRefused(ServerUnavailable):
    """服务器拒绝读取请求 (401/403/409)，按该服务器失败处理"""


class RepositoryTransport(Protocol):
    """仓库传输协议

    所有方法在服务器不可达时抛 ServerUnavailable，资源不存在时抛 NotOnServer；
    读取被拒绝时抛 ServerRefused，只有 upload 会因拒绝或认证失败抛 PublishError。
    """

    def fetch_descriptor(
        self, server: str, identity: PackageIdentity, *, timeout: float,
    ) -> dict[str, Any]:
        ...

    def fetch_checksum(
        self, server: str, variant: PackageVariant, *, timeout: float,
    ) -> str:
        ...

    def fetch_package(
        self, server: str, variant: PackageVariant, dest: Path, *, timeout: float,
    ) -> None:
        ...

    def upload(
        self,
        server: str,
        variant: PackageVariant,
        descriptor: dict[str, Any],
        package: Path | None,
        checksum: str,
        *,
        credentials: Credentials | None,
        timeout: float,
    ) -> None:
        ...


def _package_url(server: str, identity: PackageIdentity, *parts: str) -> str:
    return join_url(
        server, "api", "packages",
        identity.group_id, identity.artifact_id, identity.version, *parts,
    )


class HttpTransport:
    """基于 urllib 的 HTTP 传输（默认实现）"""

    def _open(self, req: urllib.request.Request | str, timeout: float) -> Any:
        if isinstance(req, urllib.request.Request):
            url, writing = req.full_url, req.get_method() == "PUT"
        else:
            url, writing = req, False
        validate_url_scheme(url, context="repository")
        try:
            return urllib.request.urlopen(req, timeout=timeout)  # nosec B310
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise NotOnServer(f"{url} 不存在") from e
            if e.code in (401, 403, 409) and not writing:
                raise ServerRefused(f"服务器拒绝读取 (HTTP {e.code}): {url}") from e
            if e.code == 409:
                raise PublishError(f"服务器拒绝覆盖已发布的包: {url}") from e
            if e.code in (401, 403):
                raise PublishError(f"服务器认证失败 (HTTP {e.code}): {url}") from e
            raise ServerUnavailable(f"HTTP 错误 {e.code}: {url}") from e
        except (urllib.error.URLError, socket.timeout, OSError) as e:
            raise ServerUnavailable(f"网络错误: {url} - {e}") from e

    def fetch_descriptor(
        self, server: str, identity: PackageIdentity, *, timeout: float,
    ) -> dict[str, Any]:
        with self._open(_package_url(server, identity, "descriptor"), timeout) as resp:
            body = resp.read().decode("utf-8")
        try:
            data = parse_yaml(body, f"{server} {identity}")
        except (yaml.YAMLError, ValueError) as e:
            raise ServerUnavailable(f"描述文件格式错误: {identity} - {e}") from e
        if not data:
            raise ServerUnavailable(f"描述文件为空或格式错误: {identity}")
        return data

    def fetch_checksum(
        self, server: str, variant: PackageVariant, *, timeout: float,
    ) -> str:
        url = _package_url(server, variant.identity, variant.key, "checksum")
        with self._open(url, timeout) as resp:
            return resp.read().decode("utf-8").strip()

    def fetch_package(
        self, server: str, variant: PackageVariant, dest: Path, *, timeout: float,
    ) -> None:
        url = _package_url(server, variant.identity, variant.key, "package")
        resp = self._open(url, timeout)
        try:
            with resp, open(dest, "wb") as f:
                shutil.copyfileobj(resp, f)
        except (socket.timeout, OSError) as e:
            raise ServerUnavailable(f"下载中断: {url} - {e}") from e

    def upload(
        self,
        server: str,
        variant: PackageVariant,
        descriptor: dict[str, Any],
        package: Path | None,
        checksum: str,
        *,
        credentials: Credentials | None,
        timeout: float,
    ) -> None:
        headers: dict[str, str] = {}
        if credentials is not None:
            token = base64.b64encode(
                f"{credentials.username}:{credentials.password}".encode("utf-8"),
            ).decode("ascii")
            headers["Authorization"] = f"Basic {token}"

        desc_req = urllib.request.Request(
            _package_url(server, variant.identity, "descriptor"),
            data=dump_yaml(descriptor).encode("utf-8"),
            method="PUT",
            headers={**headers, "Content-Type": "application/x-yaml"},
        )
        with self._open(desc_req, timeout):
            pass

        if variant.is_agnostic or package is None:
            return

        pkg_req = urllib.request.Request(
            _package_url(server, variant.identity, variant.key),
            data=package.read_bytes(),
            method="PUT",
            headers={
                **headers,
                "Content-Type": "application/octet-stream",
                "X-Checksum": checksum,
            },
        )
        with self._open(pkg_req, timeout):
            pass
        logger.info("已上传: %s -> %s", variant, server)
