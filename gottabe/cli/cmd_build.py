"""CLI — 构建命令"""

from __future__ import annotations

import dataclasses

import click

from gottabe.cli import _cancel_on_interrupt, _handle_errors, _load_settings
from gottabe.core.cancel import CancellationToken
from gottabe.core.descriptor import DEFAULT_DESCRIPTOR
from gottabe.core.models import CommandOptions


def register(group: click.Group) -> None:
    group.add_command(build)


@click.command()
@click.option("--descriptor", "-f", default=DEFAULT_DESCRIPTOR, help="构建描述文件路径")
@click.option("--clean", is_flag=True, help="构建前清理构建目录")
@click.option("--build", "build_", is_flag=True, help="编译并链接（未指定任何任务时的默认任务）")
@click.option("--package", is_flag=True, help="打包")
@click.option("--install", is_flag=True, help="安装到本地仓库")
@click.option("--test", is_flag=True, help="运行测试")
@click.option("--publish", is_flag=True, help="发布到所有配置的仓库服务器")
@click.option("--arch", default=None, help="目标架构")
@click.option("--platform", default=None, help="目标平台")
@click.option("--target", default=None, help="目标名称")
@click.option("--all", "all_", is_flag=True, help="依次构建所有目标")
@click.option("--no-tests", is_flag=True, help="跳过测试作用域依赖")
@click.option("--settings-file", default=None, help="设置文件路径")
def build(
    descriptor: str, clean: bool, build_: bool, package: bool, install: bool,
    test: bool, publish: bool, arch: str | None, platform: str | None,
    target: str | None, all_: bool, no_tests: bool, settings_file: str | None,
) -> None:
    """按阶段执行构建"""
    from gottabe.build.orchestrator import BuildOrchestrator
    from gottabe.build.project import Project
    from gottabe.context import BuildContext
    from gottabe.plugins.loader import load_descriptor_plugins

    options = CommandOptions(
        clean=clean, build=build_, package=package, install=install,
        test=test, publish=publish, arch=arch, platform=platform,
        target=target, all=all_, settings_file=settings_file, no_tests=no_tests,
    )
    if not any((clean, build_, package, install, test, publish)):
        options.build = True

    token = CancellationToken()
    with _handle_errors(), _cancel_on_interrupt(token):
        config = _load_settings(settings_file)
        project = Project.load(
            descriptor, build_dir=config.build_dir,
            target_name=target, arch=arch, platform=platform,
        )
        targets = project.descriptor.targets if all_ and project.descriptor.targets \
            else [project.target]

        for t in targets:
            current = dataclasses.replace(project, target=t)
            ctx = BuildContext(config, cancel=token)
            load_descriptor_plugins(current.descriptor, t, ctx.plugins)
            report = BuildOrchestrator(ctx, current, options).run()

            label = t.name if t else "default"
            click.echo(
                f"构建成功: {current.descriptor.identity} [{label}] "
                f"-> {report.final_phase.name}"
            )
            if report.artifact is not None:
                click.echo(f"  产物: {report.artifact.path} (sha256={report.artifact.checksum})")
            for server, uploaded in report.published.items():
                click.echo(f"  发布: {server} {'已上传' if uploaded else '已存在，跳过'}")
