"""构建阶段编排器

阶段严格按 CLEAN → RESOLVE_DEPENDENCIES → COMPILE → LINK → TEST → PACKAGE → INSTALL
顺序执行，从 CLEAN 开始，到命令选项决定的最后阶段为止，不跳过也不重入。

每个阶段:
1. 检查取消信号
2. 新建 PhaseContext（链接上一阶段，默认行为标志未设置）
3. RESOLVE_DEPENDENCIES 阶段先运行依赖解析器，结果对本阶段及之后的阶段可见
4. 按注册顺序依次调用绑定到该阶段的插件（协程会被等待完成）
5. 没有插件调用 prevent_default() 时执行阶段的默认行为
6. 插件抛出的异常包装为 PluginError 并中止本次构建，不回滚已完成阶段
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from gottabe.build.packager import PackagedArtifact
from gottabe.build.project import Project
from gottabe.context import BuildContext
from gottabe.core.exceptions import BuildCancelledError, GottaBeError, PluginError
from gottabe.core.models import CommandOptions, Phase, ResolvedPackage
from gottabe.plugins.base import PhaseContext, PluginContext
from gottabe.plugins.registry import PluginBinding
from gottabe.utils.logger import phase_scope

logger = logging.getLogger(__name__)

DefaultAction = Callable[[PhaseContext], None]


@dataclass
class PhaseRecord:
    """单个阶段的执行记录"""

    phase: Phase
    status: str = "running"     # done / failed / cancelled
    plugins: list[str] = field(default_factory=list)
    default_prevented: bool = False
    default_ran: bool = False
    duration: float = 0.0
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.name,
            "status": self.status,
            "plugins": list(self.plugins),
            "default_prevented": self.default_prevented,
            "default_ran": self.default_ran,
            "duration": round(self.duration, 3),
            "detail": self.detail,
        }


@dataclass
class BuildReport:
    """构建报告"""

    final_phase: Phase
    phases: list[PhaseRecord] = field(default_factory=list)
    dependencies: list[ResolvedPackage] = field(default_factory=list)
    artifact: PackagedArtifact | None = None
    published: dict[str, bool] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return (
            bool(self.phases)
            and self.phases[-1].phase == self.final_phase
            and all(r.status == "done" for r in self.phases)
        )

    def record(self, phase: Phase) -> PhaseRecord | None:
        for r in self.phases:
            if r.phase == phase:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_phase": self.final_phase.name,
            "success": self.success,
            "phases": [r.to_dict() for r in self.phases],
            "dependencies": [str(p.variant) for p in self.dependencies],
            "artifact": str(self.artifact.path) if self.artifact else "",
        }


async def _await(awaitable: Any) -> Any:
    return await awaitable


class BuildOrchestrator:
    """构建阶段状态机"""

    def __init__(
        self,
        context: BuildContext,
        project: Project,
        options: CommandOptions,
        *,
        actions: dict[Phase, DefaultAction] | None = None,
    ) -> None:
        self.context = context
        self.project = project
        self.options = options
        self.actions: dict[Phase, DefaultAction] = {
            Phase.CLEAN: self._clean,
            Phase.PACKAGE: self._package,
            Phase.INSTALL: self._install,
        }
        # 编译/链接/测试由外部协作者提供
        self.actions.update(actions or {})
        self.report = BuildReport(final_phase=options.final_phase())

    def run(self) -> BuildReport:
        """执行从 CLEAN 到最后阶段的一次完整流程

        必须在同步代码中调用：协程插件由本方法自行驱动事件循环。
        已在事件循环中的调用方请用 asyncio.to_thread(orchestrator.run)。
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise RuntimeError(
                "BuildOrchestrator.run() 不能在运行中的事件循环内调用，"
                "请改用 asyncio.to_thread(orchestrator.run)"
            )
        final = self.report.final_phase
        logger.info(
            "开始构建 %s (目标=%s, 最后阶段=%s)",
            self.project.descriptor.identity,
            self.project.target.name if self.project.target else "-",
            final.name,
        )
        previous: PhaseContext | None = None
        for phase in Phase.ordered():
            if phase.value > final.value:
                break
            with phase_scope(phase.name):
                previous = self._run_phase(phase, previous)
        logger.info("构建完成: %s", self.project.descriptor.identity)
        return self.report

    # ---- 阶段 ----

    def _new_context(self, phase: Phase, previous: PhaseContext | None) -> PhaseContext:
        project = self.project
        inputs, dest = self._io_for(phase)
        return PhaseContext(
            phase=phase,
            descriptor=project.descriptor,
            options=self.options,
            project=project,
            target=project.target,
            input_files=inputs,
            destination_dir=dest,
            dependencies=list(previous.dependencies) if previous else [],
            previous=previous,
        )

    def _io_for(self, phase: Phase) -> tuple[list[Path], Path]:
        project = self.project
        desc = project.descriptor
        target = project.target
        if phase == Phase.COMPILE:
            sources = list(desc.sources) + (list(target.sources) if target else [])
            return [project.base_dir / s for s in sources], project.output_dir
        if phase == Phase.LINK:
            return _files_in(project.output_dir), project.output_dir
        if phase == Phase.TEST:
            return [project.base_dir / s for s in desc.test_sources], project.build_dir / "test"
        if phase in (Phase.PACKAGE, Phase.INSTALL):
            return _files_in(project.output_dir), project.dist_dir
        if phase == Phase.RESOLVE_DEPENDENCIES:
            return [], project.dependency_dir
        return [], project.build_dir

    def _run_phase(self, phase: Phase, previous: PhaseContext | None) -> PhaseContext:
        record = PhaseRecord(phase=phase)
        self.report.phases.append(record)
        start = time.monotonic()
        try:
            self.context.cancel.check(f"阶段 {phase.name}")
            ctx = self._new_context(phase, previous)

            if phase == Phase.RESOLVE_DEPENDENCIES:
                ctx.dependencies = self._resolve()

            for binding in self.context.plugins.bindings_for(phase):
                record.plugins.append(binding.name)
                self._invoke(binding, ctx)

            record.default_prevented = ctx.default_prevented
            action = self.actions.get(phase)
            if ctx.default_prevented:
                logger.info("[%s] 默认行为已被插件阻止", phase.name)
            elif action is not None:
                action(ctx)
                record.default_ran = True
            ctx.seal()
        except BuildCancelledError as e:
            record.status = "cancelled"
            record.detail = str(e)
            raise
        except Exception as e:
            record.status = "failed"
            record.detail = str(e)
            if isinstance(e, GottaBeError):
                logger.error("[%s] 构建失败: %s", phase.name, e)
            else:
                logger.exception("[%s] 构建异常", phase.name)
            raise
        finally:
            record.duration = time.monotonic() - start

        record.status = "done"
        logger.info("[%s] 完成 (%.2fs)", phase.name, record.duration)
        return ctx

    def _invoke(self, binding: PluginBinding, ctx: PhaseContext) -> None:
        plugin_ctx = PluginContext(
            self.context.package_manager, self.project, binding.config,
        )
        logger.debug("[%s] 调用插件 %s", ctx.phase.name, binding.name)
        try:
            result = binding.plugin.process(ctx, plugin_ctx)
            if inspect.isawaitable(result):
                asyncio.run(_await(result))
        except BuildCancelledError:
            raise
        except Exception as e:
            raise PluginError(
                f"插件 {binding.name} 在阶段 {ctx.phase.name} 失败: {e}",
                phase=ctx.phase.name, plugin=binding.name,
            ) from e

    def _resolve(self) -> list[ResolvedPackage]:
        target = self.project.target
        deps = self.context.resolver.resolve(
            self.project.descriptor,
            arch=target.arch if target else self.options.arch,
            platform=target.platform if target else self.options.platform,
            toolchain=target.toolchain if target else None,
            scope_filter=self.options.scope_filter(),
        )
        self.report.dependencies = deps
        return deps

    # ---- 默认行为 ----

    def _clean(self, ctx: PhaseContext) -> None:
        if not self.options.clean:
            return
        build_dir = self.project.build_dir
        if build_dir.exists():
            shutil.rmtree(build_dir)
            logger.info("已清理构建目录: %s", build_dir)

    def _package(self, ctx: PhaseContext) -> None:
        self.report.artifact = self.context.package_manager.package_project(self.project)

    def _install(self, ctx: PhaseContext) -> None:
        pm = self.context.package_manager
        self.report.artifact = pm.publish_local(self.project, self.report.artifact)
        if self.options.publish:
            self.report.published = pm.publish(self.project, self.report.artifact)


def _files_in(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.rglob("*") if p.is_file())
