"""CLI — 仓库服务器命令"""

from __future__ import annotations

import click


def register(group: click.Group) -> None:
    group.add_command(serve)


@click.command()
@click.option("--root", default="repository", help="仓库存储目录")
@click.option("--host", default="127.0.0.1", help="监听地址")
@click.option("--port", default=8080, type=int, help="监听端口")
@click.option("--users-file", default=None, help="发布用户文件 (users: {name: password})")
def serve(root: str, host: str, port: int, users_file: str | None) -> None:
    """启动包仓库服务器"""
    from gottabe.web.app import create_app, load_users

    users = load_users(users_file) if users_file else None
    app = create_app(root, users)
    click.echo(f"仓库服务器: http://{host}:{port} (root={root})")
    app.run(host=host, port=port, debug=False)
