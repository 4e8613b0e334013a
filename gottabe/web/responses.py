"""Web 层统一响应辅助函数"""

from __future__ import annotations

from flask import Response, jsonify

from gottabe.core.exceptions import GottaBeError

_STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "CONFIG_ERROR": 400,
    "CHECKSUM_MISMATCH": 400,
    "PUBLISH_ERROR": 409,
    "NOT_IN_CACHE": 404,
    "PACKAGE_NOT_FOUND": 404,
}


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def not_found(resource: str) -> tuple[Response, int]:
    """资源不存在"""
    return jsonify(error=f"{resource}不存在"), 404


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message), 400


def unauthorized() -> tuple[Response, int, dict[str, str]]:
    resp = jsonify(error="需要有效的用户名和密码")
    return resp, 401, {"WWW-Authenticate": 'Basic realm="gottabe"'}


def from_error(exc: GottaBeError) -> tuple[Response, int]:
    """业务异常 → JSON 错误响应"""
    body: dict = {"error": str(exc), "code": exc.code}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), _STATUS_BY_CODE.get(exc.code, 500)
