"""构建编排器测试：阶段顺序、插件绑定、默认行为、失败与取消"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from gottabe.build.orchestrator import BuildOrchestrator
from gottabe.build.project import Project
from gottabe.context import BuildContext
from gottabe.core.descriptor import descriptor_from_dict
from gottabe.core.exceptions import BuildCancelledError, PluginError
from gottabe.core.models import CommandOptions, PackageVariant, Phase

LINUX = {"name": "linux", "arch": "x86", "platform": "linux", "toolchain": "gcc"}


def _project(tmp_path: Path, **extra) -> Project:
    data = {
        "groupId": "g", "artifactId": "app", "version": "1.0",
        "type": "executable", "targets": [LINUX],
    }
    data.update(extra)
    desc = descriptor_from_dict(data)
    return Project(desc, tmp_path, tmp_path / "build", desc.targets[0])


class Tracer:
    """记录每次调用的阶段"""

    def __init__(self, log: list, label: str, *, prevent: Phase | None = None) -> None:
        self.name = label
        self.log = log
        self.prevent = prevent

    def process(self, params, context) -> None:
        self.log.append((params.phase, self.name))
        if params.phase == self.prevent:
            params.prevent_default()


class TestPhaseOrder:
    def test_runs_clean_through_final_phase(self, config, tmp_path: Path) -> None:
        ctx = BuildContext(config)
        report = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True)).run()
        assert [r.phase for r in report.phases] == [
            Phase.CLEAN, Phase.RESOLVE_DEPENDENCIES, Phase.COMPILE, Phase.LINK,
        ]
        assert report.success
        assert report.to_dict()["final_phase"] == "LINK"

    def test_no_task_runs_clean_only(self, config, tmp_path: Path) -> None:
        ctx = BuildContext(config)
        report = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions()).run()
        assert [r.phase for r in report.phases] == [Phase.CLEAN]

    def test_plugins_only_in_bound_phases_in_order(self, config, tmp_path: Path) -> None:
        log: list = []
        ctx = BuildContext(config)
        ctx.plugins.register(Tracer(log, "a"), [Phase.COMPILE])
        ctx.plugins.register(Tracer(log, "b"), [Phase.COMPILE, Phase.LINK])
        ctx.plugins.register(Tracer(log, "c"), [Phase.TEST])

        report = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True)).run()

        assert log == [
            (Phase.COMPILE, "a"), (Phase.COMPILE, "b"), (Phase.LINK, "b"),
        ]
        assert report.record(Phase.COMPILE).plugins == ["a", "b"]

    def test_phase_context_chain(self, config, tmp_path: Path) -> None:
        seen: list = []

        class Spy:
            def process(self, params, context) -> None:
                seen.append(params)

        ctx = BuildContext(config)
        ctx.plugins.register(Spy())
        project = _project(tmp_path, sources=["src/main.c"])
        BuildOrchestrator(ctx, project, CommandOptions(build=True)).run()

        assert [p.phase for p in seen] == [
            Phase.CLEAN, Phase.RESOLVE_DEPENDENCIES, Phase.COMPILE, Phase.LINK,
        ]
        assert seen[0].previous is None
        assert seen[3].previous is seen[2]
        compile_ctx = seen[2]
        assert compile_ctx.input_files == [tmp_path / "src/main.c"]
        assert compile_ctx.destination_dir == project.output_dir
        assert compile_ctx.target.name == "linux"


class TestDefaultBehavior:
    def test_prevent_default_is_per_phase(self, config, tmp_path: Path) -> None:
        log: list = []
        ran: list[Phase] = []
        ctx = BuildContext(config)
        ctx.plugins.register(Tracer(log, "p", prevent=Phase.COMPILE))
        actions = {
            Phase.COMPILE: lambda c: ran.append(Phase.COMPILE),
            Phase.LINK: lambda c: ran.append(Phase.LINK),
        }

        report = BuildOrchestrator(
            ctx, _project(tmp_path), CommandOptions(build=True), actions=actions,
        ).run()

        assert ran == [Phase.LINK]
        assert report.record(Phase.COMPILE).default_prevented
        assert not report.record(Phase.LINK).default_prevented
        assert report.record(Phase.LINK).default_ran

    def test_prevent_after_phase_end_rejected(self, config, tmp_path: Path) -> None:
        kept: list = []

        class Keeper:
            def process(self, params, context) -> None:
                kept.append(params)

        ctx = BuildContext(config)
        ctx.plugins.register(Keeper(), [Phase.CLEAN])
        BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True)).run()

        with pytest.raises(RuntimeError):
            kept[0].prevent_default()

    def test_clean_removes_build_dir_only_when_requested(self, config, tmp_path: Path) -> None:
        project = _project(tmp_path)
        marker = project.build_dir / "old.o"
        marker.parent.mkdir(parents=True)
        marker.write_text("x")

        BuildOrchestrator(BuildContext(config), project, CommandOptions(build=True)).run()
        assert marker.exists()

        BuildOrchestrator(
            BuildContext(config), project, CommandOptions(clean=True, build=True),
        ).run()
        assert not marker.exists()


class TestFailures:
    def test_plugin_failure_aborts_build(self, config, tmp_path: Path) -> None:
        log: list = []

        class Broken:
            name = "broken"

            def process(self, params, context) -> None:
                raise OSError("编译器崩溃")

        ctx = BuildContext(config)
        ctx.plugins.register(Broken(), [Phase.COMPILE])
        ctx.plugins.register(Tracer(log, "after"), [Phase.LINK])
        orch = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True))

        with pytest.raises(PluginError) as exc:
            orch.run()

        assert exc.value.phase == "COMPILE"
        assert exc.value.plugin == "broken"
        assert "编译器崩溃" in str(exc.value)
        assert log == []
        assert orch.report.phases[-1].phase == Phase.COMPILE
        assert orch.report.phases[-1].status == "failed"
        assert not orch.report.success

    def test_async_plugin_is_awaited(self, config, tmp_path: Path) -> None:
        done: list[Phase] = []

        class AsyncPlugin:
            async def process(self, params, context) -> None:
                await asyncio.sleep(0)
                done.append(params.phase)

        ctx = BuildContext(config)
        ctx.plugins.register(AsyncPlugin(), [Phase.COMPILE])
        BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True)).run()
        assert done == [Phase.COMPILE]

    def test_async_plugin_failure(self, config, tmp_path: Path) -> None:
        class AsyncBroken:
            async def process(self, params, context) -> None:
                raise ValueError("异步失败")

        ctx = BuildContext(config)
        ctx.plugins.register(AsyncBroken(), [Phase.LINK])
        with pytest.raises(PluginError, match="异步失败"):
            BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True)).run()

    def test_run_inside_event_loop_rejected(self, config, tmp_path: Path) -> None:
        ctx = BuildContext(config)
        orch = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True))

        async def _main():
            orch.run()

        with pytest.raises(RuntimeError, match="to_thread"):
            asyncio.run(_main())
        assert orch.report.phases == []

    def test_run_via_thread_from_event_loop(self, config, tmp_path: Path) -> None:
        done: list[Phase] = []

        class AsyncPlugin:
            async def process(self, params, context) -> None:
                done.append(params.phase)

        ctx = BuildContext(config)
        ctx.plugins.register(AsyncPlugin(), [Phase.LINK])
        orch = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True))

        async def _main():
            return await asyncio.to_thread(orch.run)

        assert asyncio.run(_main()).success
        assert done == [Phase.LINK]

    def test_cancel_at_phase_boundary(self, config, tmp_path: Path) -> None:
        log: list = []
        ctx = BuildContext(config)

        class Canceller:
            def process(self, params, context) -> None:
                ctx.cancel.cancel("测试取消")

        ctx.plugins.register(Canceller(), [Phase.COMPILE])
        ctx.plugins.register(Tracer(log, "late"), [Phase.LINK])
        orch = BuildOrchestrator(ctx, _project(tmp_path), CommandOptions(build=True))

        with pytest.raises(BuildCancelledError, match="测试取消"):
            orch.run()

        assert log == []
        assert orch.report.record(Phase.COMPILE).status == "done"
        assert orch.report.record(Phase.LINK).status == "cancelled"


class TestDependenciesAndInstall:
    def test_resolved_dependencies_visible_to_later_phases(
        self, config, transport, tmp_path: Path,
    ) -> None:
        transport.add_package("http://s1", "g/zlib@1.2", variant=("x86", "linux", "gcc"))
        seen: dict[Phase, list[str]] = {}

        class Spy:
            def process(self, params, context) -> None:
                seen[params.phase] = [str(d.identity) for d in params.dependencies]

        ctx = BuildContext(config, transport=transport)
        ctx.plugins.register(Spy(), [Phase.RESOLVE_DEPENDENCIES, Phase.LINK])
        project = _project(tmp_path, dependencies=["g/zlib@1.2"])

        report = BuildOrchestrator(ctx, project, CommandOptions(build=True)).run()

        assert seen[Phase.RESOLVE_DEPENDENCIES] == ["g/zlib@1.2"]
        assert seen[Phase.LINK] == ["g/zlib@1.2"]
        assert [str(d.identity) for d in report.dependencies] == ["g/zlib@1.2"]

    def test_install_is_idempotent(self, config, tmp_path: Path) -> None:
        project = _project(tmp_path)
        out = project.output_dir / "app"

        def link(ctx) -> None:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(b"\x7fELF")

        first = BuildOrchestrator(
            BuildContext(config), project, CommandOptions(install=True),
            actions={Phase.LINK: link},
        ).run()
        second = BuildOrchestrator(
            BuildContext(config), project, CommandOptions(install=True),
            actions={Phase.LINK: link},
        ).run()

        variant = PackageVariant(project.descriptor.identity, "x86", "linux", "gcc")
        assert first.success and second.success
        assert first.artifact.checksum == second.artifact.checksum
        cached = BuildContext(config).cache.load_package(variant)
        assert cached.checksum == first.artifact.checksum
        assert [r.phase for r in first.phases][-2:] == [Phase.PACKAGE, Phase.INSTALL]
