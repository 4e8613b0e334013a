"""依赖解析器

职责:
- 从根描述的直接依赖出发，广度优先遍历传递依赖图
- 按坐标去重：先见版本胜出（最近者胜出），重复访问只合并作用域
- 作用域传播：传递依赖去掉 test；仅 test 的父节点的子依赖变为 test；
  仅 shallow 的节点不展开，直到获得非 shallow 作用域
- 环检测与拓扑排序（依赖在前）
- 通过缓存并发落地每个节点，缓存未命中时回退到远程仓库

遍历是串行的，只有落地阶段使用线程池。
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor

from gottabe.cache.manager import PackageCacheManager
from gottabe.core.cancel import CancellationToken
from gottabe.core.exceptions import NotInCacheError, VersionConflictError
from gottabe.core.models import (
    ALL_SCOPES,
    BuildDescriptor,
    Dependency,
    PackageIdentity,
    PackageVariant,
    ResolvedPackage,
    Scope,
)
from gottabe.repository.client import RemoteRepositoryClient
from gottabe.resolver.graph import DependencyGraph

logger = logging.getLogger(__name__)

_TEST_ONLY = frozenset({Scope.TEST})
_SHALLOW_ONLY = frozenset({Scope.SHALLOW})


def check_versions(deps: list[Dependency], source: str) -> None:
    """同一描述文件内同一坐标只能声明一个版本"""
    seen: dict[str, str] = {}
    for dep in deps:
        coord = dep.identity.coordinate
        prev = seen.setdefault(coord, dep.identity.version)
        if prev != dep.identity.version:
            raise VersionConflictError(
                f"{source} 对 {coord} 声明了不同版本: {prev} 与 {dep.identity.version}"
            )


def propagate_scopes(
    parent: frozenset[Scope], edge: frozenset[Scope],
) -> frozenset[Scope]:
    """计算传递依赖经过一条边后获得的作用域"""
    result: set[Scope] = set()
    if parent & {Scope.COMPILE, Scope.RUNTIME}:
        result |= edge - {Scope.TEST}
    if Scope.TEST in parent:
        result.add(Scope.TEST)
    return frozenset(result)


def is_shallow_only(scopes: frozenset[Scope]) -> bool:
    return not scopes or scopes <= _SHALLOW_ONLY


class DependencyResolver:
    """传递依赖解析器"""

    def __init__(
        self,
        cache: PackageCacheManager,
        client: RemoteRepositoryClient,
        servers: list[str],
        *,
        max_workers: int = 4,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self.servers = list(servers)
        self.max_workers = max(1, max_workers)
        self.cancel = cancel or client.cancel

    # ---- 遍历 ----

    def _fetch_metadata(self, identity: PackageIdentity) -> BuildDescriptor:
        """只取描述文件：先查缓存，未命中则从服务器拉取元信息并缓存"""
        variant = PackageVariant(identity)
        resolved = self.cache.materialize(
            variant,
            lambda: self.client.download_package(
                variant, self.servers, self.cache.staging_dir,
            ),
        )
        if resolved.descriptor is None:
            raise NotInCacheError(f"缓存中缺少 {identity} 的描述文件")
        return resolved.descriptor

    def build_graph(self, root: BuildDescriptor) -> DependencyGraph:
        """构建传递依赖图（不落地二进制）"""
        check_versions(root.dependencies, str(root.identity))
        graph = DependencyGraph(root.identity)
        dependencies: dict[str, list[Dependency]] = {graph.root: list(root.dependencies)}

        pending: deque[str] = deque([graph.root])
        while pending:
            coord = pending.popleft()
            self.cancel.check(f"解析 {coord}")

            if coord not in dependencies:
                if is_shallow_only(graph.scopes(coord)):
                    continue
                identity = graph.identity(coord)
                desc = self._fetch_metadata(identity)
                check_versions(desc.dependencies, str(identity))
                dependencies[coord] = list(desc.dependencies)

            from_root = coord == graph.root
            parent_scopes = graph.scopes(coord)
            for dep in dependencies[coord]:
                if from_root:
                    child_scopes = dep.scopes
                elif dep.scopes == _TEST_ONLY:
                    # 传递的 test 依赖不拉取
                    continue
                else:
                    child_scopes = propagate_scopes(parent_scopes, dep.scopes)
                if not child_scopes:
                    continue

                child = dep.identity.coordinate
                if child not in graph:
                    graph.add_node(dep.identity)
                new_edge = graph.add_edge(coord, child)
                existing = graph.identity(child)
                if new_edge and existing.version != dep.identity.version:
                    logger.warning(
                        "版本冲突按先见者处理: %s 使用 %s，忽略 %s (来自 %s)",
                        child, existing.version, dep.identity.version, coord,
                    )
                if child == graph.root:
                    continue
                # 作用域扩大后重新排队：未展开的节点会展开，已展开的节点只沿已记录的边传播
                if graph.merge_scopes(child, child_scopes):
                    pending.append(child)

        logger.info("依赖图构建完成: %d 个包", len(graph) - 1)
        return graph

    # ---- 落地 ----

    def _materialize(self, variant: PackageVariant) -> ResolvedPackage:
        self.cancel.check(f"获取 {variant}")
        return self.cache.materialize(
            variant,
            lambda: self.client.download_package(
                variant, self.servers, self.cache.staging_dir,
            ),
        )

    def _variant_for(
        self,
        identity: PackageIdentity,
        scopes: frozenset[Scope],
        arch: str | None,
        platform: str | None,
        toolchain: str | None,
    ) -> PackageVariant:
        if is_shallow_only(scopes):
            return PackageVariant(identity)
        return PackageVariant(identity, arch, platform, toolchain)

    def resolve(
        self,
        root: BuildDescriptor,
        *,
        arch: str | None = None,
        platform: str | None = None,
        toolchain: str | None = None,
        scope_filter: frozenset[Scope] = ALL_SCOPES,
    ) -> list[ResolvedPackage]:
        """解析并落地根描述的传递依赖

        返回:
            按拓扑序（依赖在前）排列、经作用域过滤后的 ResolvedPackage 列表
        """
        graph = self.build_graph(root)
        order = [
            c for c in graph.topological_order()
            if graph.scopes(c) & scope_filter
        ]
        variants = [
            self._variant_for(graph.identity(c), graph.scopes(c), arch, platform, toolchain)
            for c in order
        ]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._materialize, v) for v in variants]
            try:
                resolved = [f.result() for f in futures]
            except BaseException:
                for f in futures:
                    f.cancel()
                raise

        for coord, pkg in zip(order, resolved):
            pkg.scopes = graph.scopes(coord)
        logger.info(
            "依赖解析完成: %s -> %s",
            root.identity, ", ".join(str(p.variant) for p in resolved) or "(无)",
        )
        return resolved
