"""CLI — 依赖解析与缓存更新命令"""

from __future__ import annotations

import click

from gottabe.cli import _cancel_on_interrupt, _handle_errors, _load_settings
from gottabe.core.cancel import CancellationToken
from gottabe.core.descriptor import DEFAULT_DESCRIPTOR


def register(group: click.Group) -> None:
    group.add_command(deps)
    group.add_command(update)


@click.command()
@click.option("--descriptor", "-f", default=DEFAULT_DESCRIPTOR, help="构建描述文件路径")
@click.option("--target", default=None, help="目标名称")
@click.option("--test", is_flag=True, help="包含测试作用域依赖")
@click.option("--settings-file", default=None, help="设置文件路径")
def deps(descriptor: str, target: str | None, test: bool, settings_file: str | None) -> None:
    """解析依赖并按构建顺序输出（依赖在前）"""
    from gottabe.build.project import Project
    from gottabe.context import BuildContext
    from gottabe.core.models import CommandOptions

    token = CancellationToken()
    with _handle_errors(), _cancel_on_interrupt(token):
        config = _load_settings(settings_file)
        project = Project.load(descriptor, build_dir=config.build_dir, target_name=target)
        ctx = BuildContext(config, cancel=token)
        t = project.target
        resolved = ctx.resolver.resolve(
            project.descriptor,
            arch=t.arch if t else None,
            platform=t.platform if t else None,
            toolchain=t.toolchain if t else None,
            scope_filter=CommandOptions(test=test).scope_filter(),
        )
    if not resolved:
        click.echo("没有依赖。")
        return
    for pkg in resolved:
        scopes = ",".join(sorted(s.value for s in pkg.scopes))
        click.echo(f"  {str(pkg.identity):40s} [{pkg.variant.key}] {scopes:20s} {pkg.location}")


@click.command()
@click.argument("coordinate")
@click.option("--settings-file", default=None, help="设置文件路径")
def update(coordinate: str, settings_file: str | None) -> None:
    """按服务器校验和刷新缓存中的包（group/artifact@version）"""
    from gottabe.context import BuildContext
    from gottabe.core.descriptor import parse_coordinate

    token = CancellationToken()
    with _handle_errors(), _cancel_on_interrupt(token):
        identity = parse_coordinate(coordinate).identity
        ctx = BuildContext(_load_settings(settings_file), cancel=token)
        result = ctx.package_manager.update_package(identity)
    if not result:
        click.echo(f"缓存中没有 {identity} 的二进制变体。")
        return
    for variant, status in result.items():
        click.echo(f"  {variant.key:30s} {status}")
