"""项目打包

把当前目标的构建产出、头文件目录与描述文件打成 tar.gz，并计算 SHA-256。
归档内容可复现：条目排序，mtime/属主归零，gzip 头不写时间戳，
同一份产出重复打包得到相同的校验和（本地安装据此保持幂等）。
"""

from __future__ import annotations

import gzip
import io
import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gottabe.build.project import Project
from gottabe.core.checksum import file_checksum
from gottabe.core.descriptor import descriptor_to_dict
from gottabe.core.models import PackageVariant
from gottabe.repository.store import DESCRIPTOR_FILE
from gottabe.utils.yaml_io import dump_yaml

logger = logging.getLogger(__name__)


@dataclass
class PackagedArtifact:
    """打包结果"""

    variant: PackageVariant
    path: Path
    checksum: str
    descriptor: dict[str, Any]


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _add_tree(tar: tarfile.TarFile, src: Path, arc_prefix: str) -> int:
    if src.is_file():
        tar.add(str(src), arcname=f"{arc_prefix}/{src.name}", filter=_normalize)
        return 1
    count = 0
    for f in sorted(p for p in src.rglob("*") if p.is_file()):
        rel = f.relative_to(src).as_posix()
        tar.add(str(f), arcname=f"{arc_prefix}/{rel}", filter=_normalize)
        count += 1
    return count


def package_project(project: Project) -> PackagedArtifact:
    """打包当前目标，返回归档路径与校验和"""
    variant = project.variant()
    descriptor = descriptor_to_dict(project.descriptor)
    project.dist_dir.mkdir(parents=True, exist_ok=True)
    archive = project.dist_dir / (
        f"{project.package_name}-{project.descriptor.version}-{variant.key}.tar.gz"
    )

    with open(archive, "wb") as raw, \
            gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz, \
            tarfile.open(fileobj=gz, mode="w") as tar:
        data = dump_yaml(descriptor).encode("utf-8")
        info = _normalize(tarfile.TarInfo(DESCRIPTOR_FILE))
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))

        files = 0
        if project.output_dir.exists():
            files += _add_tree(tar, project.output_dir, "output")
        includes = list(project.descriptor.include_dirs) + list(project.descriptor.package.includes)
        for inc in dict.fromkeys(includes):
            path = project.base_dir / inc
            if path.exists():
                files += _add_tree(tar, path, "include")
            else:
                logger.warning("打包时跳过不存在的头文件目录: %s", path)
        for other in project.descriptor.package.other:
            path = project.base_dir / other
            if path.exists():
                files += _add_tree(tar, path, "other")
            else:
                logger.warning("打包时跳过不存在的文件: %s", path)

    checksum = file_checksum(archive)
    logger.info("打包完成: %s (%d 个文件, sha256=%s)", archive.name, files, checksum[:12])
    return PackagedArtifact(
        variant=variant, path=archive, checksum=checksum, descriptor=descriptor,
    )
