"""gottabe 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
import signal
from contextlib import contextmanager
from typing import Iterator

import click

from gottabe import __version__
from gottabe.core.cancel import CancellationToken
from gottabe.core.config import DEFAULT_SETTINGS_FILE, Config
from gottabe.core.exceptions import GottaBeError
from gottabe.utils.logger import setup_logging


def _load_settings(settings_file: str | None) -> Config:
    return Config.from_file(settings_file or DEFAULT_SETTINGS_FILE)


@contextmanager
def _handle_errors() -> Iterator[None]:
    """业务异常 → 一行错误提示 + 退出码 1"""
    try:
        yield
    except GottaBeError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """第一次 Ctrl-C 在下一个阶段/下载边界取消构建，第二次立即中断"""

    def _handler(signum, frame):  # type: ignore[no-untyped-def]
        if token.cancelled:
            raise KeyboardInterrupt
        token.cancel("用户中断")
        click.echo("正在取消，将在下一个边界停止（再次 Ctrl-C 立即退出）...", err=True)

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """gottabe - 原生项目构建编排与二进制包管理"""
    setup_logging(
        level=os.getenv("GOTTABE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("GOTTABE_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from gottabe.cli.cmd_build import register as _reg_build  # noqa: E402
from gottabe.cli.cmd_deps import register as _reg_deps  # noqa: E402
from gottabe.cli.cmd_serve import register as _reg_serve  # noqa: E402

_reg_build(main)
_reg_deps(main)
_reg_serve(main)
