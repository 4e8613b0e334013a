"""依赖解析器测试：去重、拓扑序、环、作用域过滤、先见版本胜出"""

from __future__ import annotations

import pytest

from gottabe.context import BuildContext
from gottabe.core.descriptor import descriptor_from_dict
from gottabe.core.exceptions import CycleError, PackageNotFoundError, VersionConflictError
from gottabe.core.models import ALL_SCOPES, Scope

S1 = "http://s1"
TRIPLE = ("x86", "linux", "gcc")
NO_TEST = ALL_SCOPES - {Scope.TEST}


def _root(*deps: str):
    return descriptor_from_dict({
        "groupId": "g", "artifactId": "root", "version": "1",
        "dependencies": list(deps),
    })


def _resolve(ctx: BuildContext, root, scope_filter=ALL_SCOPES):
    return ctx.resolver.resolve(
        root, arch="x86", platform="linux", toolchain="gcc", scope_filter=scope_filter,
    )


def _names(resolved) -> list[str]:
    return [p.identity.artifact_id for p in resolved]


class TestGraphShape:
    def test_diamond_dedupe_and_order(self, config, transport) -> None:
        """A→B, A→C, B→D, C→D：D 只出现一次，且排在 B 和 C 之前"""
        transport.add_package(S1, "g/b@1", deps=["g/d@1"], variant=TRIPLE)
        transport.add_package(S1, "g/c@1", deps=["g/d@1"], variant=TRIPLE)
        transport.add_package(S1, "g/d@1", variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        names = _names(_resolve(ctx, _root("g/b@1", "g/c@1")))

        assert sorted(names) == ["b", "c", "d"]
        assert names.index("d") < names.index("b")
        assert names.index("d") < names.index("c")
        assert transport.count("package") == 3

    def test_cycle_names_path(self, config, transport) -> None:
        transport.add_package(S1, "g/x@1", deps=["g/y@1"], variant=TRIPLE)
        transport.add_package(S1, "g/y@1", deps=["g/x@1"], variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        with pytest.raises(CycleError) as exc:
            _resolve(ctx, _root("g/x@1"))

        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"g/x", "g/y"}
        assert "g/x" in str(exc.value) and "->" in str(exc.value)
        assert transport.count("package") == 0

    def test_cycle_through_root(self, config, transport) -> None:
        transport.add_package(S1, "g/x@1", deps=["g/root@1"], variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)
        with pytest.raises(CycleError) as exc:
            _resolve(ctx, _root("g/x@1"))
        assert set(exc.value.cycle) == {"g/x", "g/root"}

    def test_first_seen_version_wins(self, config, transport) -> None:
        transport.add_package(S1, "g/a@1", variant=TRIPLE)
        transport.add_package(S1, "g/a@2", variant=TRIPLE)
        transport.add_package(S1, "g/b@1", deps=["g/a@2"], variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        resolved = _resolve(ctx, _root("g/a@1", "g/b@1"))

        versions = {p.identity.artifact_id: p.identity.version for p in resolved}
        assert versions == {"a": "1", "b": "1"}

    def test_version_conflict_in_one_descriptor(self, config, transport) -> None:
        ctx = BuildContext(config, transport=transport)
        with pytest.raises(VersionConflictError, match="g/a"):
            _resolve(ctx, _root("g/a@1", "g/a@2"))
        assert transport.calls == []

    def test_scopes_merge_by_union(self, config, transport) -> None:
        transport.add_package(S1, "g/a@1", variant=TRIPLE)
        transport.add_package(S1, "g/b@1", deps=["g/a@1:runtime"], variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        resolved = _resolve(ctx, _root("g/a@1:compile", "g/b@1"))

        a = next(p for p in resolved if p.identity.artifact_id == "a")
        assert a.scopes == frozenset({Scope.COMPILE, Scope.RUNTIME})


class TestScopes:
    @pytest.fixture()
    def ctx(self, config, transport) -> BuildContext:
        transport.add_package(S1, "g/lib@1", deps=["g/tool@1:test"], variant=TRIPLE)
        transport.add_package(S1, "g/tool@1", variant=TRIPLE)
        transport.add_package(S1, "g/gtest@1", deps=["g/gmock@1"], variant=TRIPLE)
        transport.add_package(S1, "g/gmock@1", variant=TRIPLE)
        return BuildContext(config, transport=transport)

    def test_non_test_build_excludes_test_scope(self, ctx, transport) -> None:
        names = _names(_resolve(ctx, _root("g/lib@1", "g/gtest@1:test"), NO_TEST))
        assert names == ["lib"]
        assert transport.count("package") == 1

    def test_test_build_includes_test_scope(self, ctx) -> None:
        resolved = _resolve(ctx, _root("g/lib@1", "g/gtest@1:test"))
        by_name = {p.identity.artifact_id: p for p in resolved}
        assert set(by_name) == {"lib", "gtest", "gmock"}
        # 仅 test 父节点的子依赖变为 test
        assert by_name["gmock"].scopes == frozenset({Scope.TEST})

    def test_transitive_test_deps_not_pulled(self, ctx) -> None:
        names = _names(_resolve(ctx, _root("g/lib@1")))
        assert "tool" not in names

    def test_scope_upgrade_reaches_grandchildren(self, config, transport) -> None:
        """先以 test 作用域展开的节点后来获得 compile，其子依赖随之获得 compile"""
        transport.add_package(S1, "g/t@1", deps=["g/x@1"], variant=TRIPLE)
        transport.add_package(S1, "g/a@1", deps=["g/b@1"], variant=TRIPLE)
        transport.add_package(S1, "g/b@1", deps=["g/x@1"], variant=TRIPLE)
        transport.add_package(S1, "g/x@1", deps=["g/y@1"], variant=TRIPLE)
        transport.add_package(S1, "g/y@1", variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        names = _names(_resolve(ctx, _root("g/t@1:test", "g/a@1"), NO_TEST))

        assert set(names) == {"a", "b", "x", "y"}
        # 图构建各取一次描述，四个二进制下载各再取一次
        assert transport.count("descriptor") == 5 + 4


class TestShallow:
    def test_shallow_only_not_expanded(self, config, transport) -> None:
        transport.add_package(S1, "g/s@1", deps=["g/t@1"])
        transport.add_package(S1, "g/t@1", variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        resolved = _resolve(ctx, _root("g/s@1:shallow"))

        assert _names(resolved) == ["s"]
        assert resolved[0].variant.is_agnostic
        assert transport.count("package") == 0
        assert transport.count("descriptor") == 1

    def test_shallow_expanded_once_after_gaining_scope(self, config, transport) -> None:
        transport.add_package(S1, "g/s@1", deps=["g/t@1"], variant=TRIPLE)
        transport.add_package(S1, "g/t@1", variant=TRIPLE)
        transport.add_package(S1, "g/b@1", deps=["g/s@1"], variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)

        resolved = _resolve(ctx, _root("g/s@1:shallow", "g/b@1"))

        by_name = {p.identity.artifact_id: p for p in resolved}
        assert set(by_name) == {"s", "t", "b"}
        assert not by_name["s"].variant.is_agnostic


class TestCacheUse:
    def test_second_resolution_is_offline(self, config, transport) -> None:
        transport.add_package(S1, "g/a@1", deps=["g/b@1"], variant=TRIPLE)
        transport.add_package(S1, "g/b@1", variant=TRIPLE)
        _resolve(BuildContext(config, transport=transport), _root("g/a@1"))
        transport.calls.clear()
        transport.down.update(config.servers)

        names = _names(_resolve(BuildContext(config, transport=transport), _root("g/a@1")))

        assert names == ["b", "a"]
        assert transport.calls == []

    def test_missing_package(self, config, transport) -> None:
        ctx = BuildContext(config, transport=transport)
        with pytest.raises(PackageNotFoundError):
            _resolve(ctx, _root("g/missing@1"))

    def test_fallback_to_second_server(self, config, transport) -> None:
        transport.down.add(S1)
        transport.add_package("http://s2", "g/a@1", variant=TRIPLE)
        ctx = BuildContext(config, transport=transport)
        resolved = _resolve(ctx, _root("g/a@1"))
        assert (resolved[0].location / "package.tar.gz").read_bytes() == b"g/a@1:x86-linux-gcc"
