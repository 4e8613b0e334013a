"""测试公共夹具：内存仓库传输层"""

from __future__ import annotations

import threading
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

from gottabe.core.checksum import bytes_checksum
from gottabe.core.config import Config
from gottabe.core.models import PackageIdentity, PackageVariant
from gottabe.repository.client import descriptor_checksum
from gottabe.repository.transport import NotOnServer, ServerUnavailable


class FakeTransport:
    """若干个内存仓库服务器，记录每次调用"""

    def __init__(self) -> None:
        self.descriptors: dict[tuple[str, PackageIdentity], dict[str, Any]] = {}
        self.packages: dict[tuple[str, PackageVariant], bytes] = {}
        self.checksums: dict[tuple[str, PackageVariant], str] = {}
        self.down: set[str] = set()
        self.corrupt: Counter = Counter()
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    # ---- 准备数据 ----

    def add_package(
        self,
        server: str,
        coordinate: str,
        deps: list[str] | tuple[str, ...] = (),
        variant: tuple[str, str, str] | None = None,
        payload: bytes | None = None,
    ) -> PackageVariant:
        """在服务器上放一个包：coordinate 形如 g/a@v，deps 为依赖坐标字符串"""
        ga, version = coordinate.split("@")
        group, artifact = ga.split("/")
        identity = PackageIdentity(group, artifact, version)
        desc: dict[str, Any] = {"groupId": group, "artifactId": artifact, "version": version}
        if deps:
            desc["dependencies"] = list(deps)
        self.descriptors[(server, identity)] = desc
        if variant is None:
            return PackageVariant(identity)
        v = PackageVariant(identity, *variant)
        data = payload if payload is not None else f"{coordinate}:{v.key}".encode()
        self.packages[(server, v)] = data
        self.checksums[(server, v)] = bytes_checksum(data)
        return v

    def count(self, method: str, server: str | None = None) -> int:
        return sum(
            1 for m, s, _ in self.calls
            if m == method and (server is None or s == server)
        )

    def _record(self, method: str, server: str, what: Any) -> None:
        with self._lock:
            self.calls.append((method, server, str(what)))
        if server in self.down:
            raise ServerUnavailable(f"{server} 不可达")

    # ---- RepositoryTransport ----

    def fetch_descriptor(self, server, identity, *, timeout):
        self._record("descriptor", server, identity)
        try:
            return dict(self.descriptors[(server, identity)])
        except KeyError:
            raise NotOnServer(str(identity)) from None

    def fetch_checksum(self, server, variant, *, timeout):
        self._record("checksum", server, variant)
        if variant.is_agnostic:
            desc = self.descriptors.get((server, variant.identity))
            if desc is None:
                raise NotOnServer(str(variant))
            return descriptor_checksum(desc)
        try:
            return self.checksums[(server, variant)]
        except KeyError:
            raise NotOnServer(str(variant)) from None

    def fetch_package(self, server, variant, dest: Path, *, timeout):
        self._record("package", server, variant)
        try:
            data = self.packages[(server, variant)]
        except KeyError:
            raise NotOnServer(str(variant)) from None
        with self._lock:
            if self.corrupt[(server, variant)] > 0:
                self.corrupt[(server, variant)] -= 1
                data = data + b"-corrupted"
        dest.write_bytes(data)

    def upload(self, server, variant, descriptor, package, checksum, *, credentials, timeout):
        self._record("upload", server, variant)
        self.descriptors[(server, variant.identity)] = dict(descriptor)
        if package is not None and not variant.is_agnostic:
            self.packages[(server, variant)] = Path(package).read_bytes()
            self.checksums[(server, variant)] = checksum


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def config(tmp_path: Path) -> Config:
    """指向临时缓存目录、两个服务器的设置"""
    return Config(
        cache_dir=str(tmp_path / "cache"),
        servers=["http://s1", "http://s2"],
        server_timeout=5.0,
        package_timeout=30.0,
        max_workers=4,
    )
