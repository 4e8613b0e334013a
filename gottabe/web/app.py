"""包仓库服务器（基于 Flask）

以 RepositoryStore 为后端，提供 gottabe 客户端使用的 HTTP 布局。

启动方式:
    gottabe serve --root ./repository --port 8080
    gunicorn --config deploy/gunicorn.conf.py "gottabe.web.app:create_app()"
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from gottabe.core.exceptions import GottaBeError
from gottabe.repository.store import RepositoryStore
from gottabe.utils.yaml_io import load_yaml
from gottabe.web.responses import from_error

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 512 * 1024 * 1024  # 512 MB

DEFAULT_ROOT = "repository"


def load_users(path: str | Path) -> dict[str, str]:
    """读取用户文件: users: {name: password}"""
    data = load_yaml(path)
    users = data.get("users") or {}
    return {str(k): str(v) for k, v in users.items()}


def create_app(
    store_root: str | Path | None = None,
    users: dict[str, str] | None = None,
) -> Flask:
    """创建仓库服务器应用

    参数缺省时读取环境变量 GOTTABE_REPO_ROOT / GOTTABE_REPO_USERS（用户文件路径）。
    """
    from gottabe.web.packages_bp import packages_bp

    root = store_root or os.getenv("GOTTABE_REPO_ROOT", DEFAULT_ROOT)
    if users is None and os.getenv("GOTTABE_REPO_USERS"):
        users = load_users(os.environ["GOTTABE_REPO_USERS"])

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.config["GOTTABE_STORE"] = RepositoryStore(root)
    app.config["GOTTABE_USERS"] = users or {}

    @app.errorhandler(GottaBeError)
    def handle_gottabe_error(exc: GottaBeError):  # type: ignore[no-untyped-def]
        return from_error(exc)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):  # type: ignore[no-untyped-def]
        """将所有 HTTP 异常统一返回 JSON"""
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(Exception)
    def handle_generic_exception(exc: Exception):  # type: ignore[no-untyped-def]  # noqa: ARG001
        logger.exception("未处理的异常")
        return jsonify(error="服务器内部错误"), 500

    @app.route("/api/health")
    def health():  # type: ignore[no-untyped-def]
        return jsonify(status="ok")

    app.register_blueprint(packages_bp)
    logger.info(
        "仓库服务器已创建: root=%s, 认证=%s",
        Path(root).resolve(), "开启" if users else "关闭",
    )
    return app
