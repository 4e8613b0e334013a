"""包仓库 API Blueprint

    GET  /api/packages/<g>/<a>                        版本列表
    GET  /api/packages/<g>/<a>/<v>/descriptor          描述文件 (YAML)
    PUT  /api/packages/<g>/<a>/<v>/descriptor          上传描述文件
    GET  /api/packages/<g>/<a>/<v>/<variant>/checksum  变体校验和 (文本)
    GET  /api/packages/<g>/<a>/<v>/<variant>/package   包内容
    PUT  /api/packages/<g>/<a>/<v>/<variant>           上传包内容 (X-Checksum 头)
"""

from __future__ import annotations

import functools
import hmac
import shutil
from typing import Any, Callable

import yaml
from flask import Blueprint, Response, current_app, jsonify, request, send_file

from gottabe.core.descriptor import descriptor_from_dict
from gottabe.core.exceptions import ValidationError
from gottabe.core.models import AGNOSTIC_VARIANT_KEY, PackageIdentity, PackageVariant
from gottabe.repository.store import PACKAGE_FILE, RepositoryStore
from gottabe.utils.yaml_io import dump_yaml, parse_yaml
from gottabe.web.responses import bad_request, not_found, ok, unauthorized

packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _store() -> RepositoryStore:
    return current_app.config["GOTTABE_STORE"]


def _variant(identity: PackageIdentity, key: str) -> PackageVariant:
    if key == AGNOSTIC_VARIANT_KEY:
        return PackageVariant(identity)
    parts = key.split("-", 2)
    if len(parts) != 3:
        raise ValidationError(f"非法的变体标识: {key}，格式应为 arch-platform-toolchain")
    return PackageVariant(identity, *parts)


def require_auth(view: Callable[..., Any]) -> Callable[..., Any]:
    """配置了用户时，写操作要求 Basic 认证"""

    @functools.wraps(view)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        users: dict[str, str] = current_app.config.get("GOTTABE_USERS") or {}
        if users:
            auth = request.authorization
            if auth is None or auth.username not in users:
                return unauthorized()
            expected = users[auth.username]
            if not hmac.compare_digest(str(auth.password or ""), str(expected)):
                return unauthorized()
        return view(*args, **kwargs)

    return wrapper


@packages_bp.route("/<group>/<artifact>", methods=["GET"])
def list_versions(group: str, artifact: str) -> Response:
    return jsonify(versions=_store().list_versions(group, artifact))


@packages_bp.route("/<group>/<artifact>/<version>/descriptor", methods=["GET"])
def get_descriptor(group: str, artifact: str, version: str) -> Any:
    identity = PackageIdentity(group, artifact, version)
    store = _store()
    if not store.has_descriptor(identity):
        return not_found(f"包 {identity} ")
    return send_file(store.descriptor_path(identity), mimetype="application/x-yaml")


@packages_bp.route("/<group>/<artifact>/<version>/descriptor", methods=["PUT"])
@require_auth
def put_descriptor(group: str, artifact: str, version: str) -> Any:
    identity = PackageIdentity(group, artifact, version)
    try:
        data = parse_yaml(request.get_data(as_text=True), str(identity))
    except (yaml.YAMLError, ValueError) as e:
        return bad_request(f"描述文件不是合法的 YAML: {e}")
    if not data:
        return bad_request("描述文件为空或不是字典")
    desc = descriptor_from_dict(data, source=str(identity))
    if desc.identity != identity:
        return bad_request(f"描述文件声明的是 {desc.identity}，与地址 {identity} 不一致")

    store = _store()
    if store.has_descriptor(identity):
        current = store.descriptor_path(identity).read_text(encoding="utf-8")
        if current != dump_yaml(data):
            return jsonify(error=f"{identity} 已发布且描述文件不同"), 409
        return ok({"message": "描述文件未变化", "package": str(identity)})
    store.put_descriptor(identity, data)
    current_app.logger.info("描述文件已发布: %s", identity)
    return ok({"message": "描述文件已发布", "package": str(identity)}, 201)


@packages_bp.route("/<group>/<artifact>/<version>/<key>/checksum", methods=["GET"])
def get_checksum(group: str, artifact: str, version: str, key: str) -> Any:
    variant = _variant(PackageIdentity(group, artifact, version), key)
    checksum = _store().read_checksum(variant)
    if checksum is None:
        return not_found(f"变体 {variant} ")
    return Response(checksum, mimetype="text/plain")


@packages_bp.route("/<group>/<artifact>/<version>/<key>/package", methods=["GET"])
def get_package(group: str, artifact: str, version: str, key: str) -> Any:
    variant = _variant(PackageIdentity(group, artifact, version), key)
    store = _store()
    if variant.is_agnostic or not store.has_variant(variant):
        return not_found(f"变体 {variant} 的包内容")
    return send_file(store.package_path(variant), mimetype="application/gzip")


@packages_bp.route("/<group>/<artifact>/<version>/<key>", methods=["PUT"])
@require_auth
def put_package(group: str, artifact: str, version: str, key: str) -> Any:
    identity = PackageIdentity(group, artifact, version)
    variant = _variant(identity, key)
    if variant.is_agnostic:
        return bad_request("平台无关变体只需上传描述文件")
    checksum = request.headers.get("X-Checksum", "").strip()
    if not checksum:
        return bad_request("缺少 X-Checksum 请求头")

    store = _store()
    if not store.has_descriptor(identity):
        return bad_request(f"请先上传 {identity} 的描述文件")

    staged = store.staging_dir()
    try:
        upload = staged / PACKAGE_FILE
        with open(upload, "wb") as f:
            shutil.copyfileobj(request.stream, f)
        written = store.put(variant, store.read_descriptor(identity), upload, checksum)
    finally:
        shutil.rmtree(staged, ignore_errors=True)

    if not written:
        return ok({"message": "内容一致，未重复发布", "variant": str(variant)})
    current_app.logger.info("变体已发布: %s", variant)
    return ok({"message": "已发布", "variant": str(variant)}, 201)
