"""包集合 / 项目清单加载

职责:
- 从 YAML 文件构造 PackageSet（支持顶层列表或 packages 段）
- 从 YAML 文件构造 Manifest
- 从当前目录向上查找项目清单

包集合格式:

    packages:
      - name: base
        repo: https://github.com/org/base
        version: v0.9.0
        dependencies: []
      - name: matrix
        url: https://example.com/matrix-1.2.tar.gz
        dependencies: [base]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from depot.core.exceptions import ConfigError
from depot.core.pkg.models import (
    ArchiveSource,
    GitSource,
    Manifest,
    PackageDescriptor,
    PackageSet,
    Source,
)
from depot.utils.yaml_io import load_yaml_document

logger = logging.getLogger(__name__)

MANIFEST_FILE = "depot.yml"


def parse_package(entry: Any) -> PackageDescriptor:
    """把一条包定义转换为 PackageDescriptor"""
    if not isinstance(entry, dict):
        raise ConfigError(f"包定义必须是映射: {entry!r}")
    name = entry.get("name")
    if not name:
        raise ConfigError(f"包定义缺少 name: {entry!r}")

    source: Source
    if entry.get("url"):
        source = ArchiveSource(url=str(entry["url"]))
    elif entry.get("repo"):
        source = GitSource(
            repo_url=str(entry["repo"]),
            ref=str(entry.get("version", "")),
        )
    else:
        raise ConfigError(f"包 '{name}' 必须指定 repo+version 或 url")

    deps = entry.get("dependencies") or []
    if not isinstance(deps, list):
        raise ConfigError(f"包 '{name}' 的 dependencies 必须是列表")
    return PackageDescriptor(
        name=str(name),
        source=source,
        dependencies=tuple(str(d) for d in deps),
    )


def _read_document(path: Path) -> Any:
    """读取 YAML 文档，语法错误或文件过大转换为 ConfigError"""
    try:
        return load_yaml_document(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 格式错误 {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(str(e)) from e


def load_package_set(path: str | Path) -> PackageSet:
    """从文件加载包集合，重名包抛 DuplicatePackageError"""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"包集合文件不存在: {p}")

    data = _read_document(p)
    if isinstance(data, dict):
        data = data.get("packages")
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ConfigError(f"包集合必须是列表或包含 packages 列表: {p}")

    package_set = PackageSet(parse_package(entry) for entry in data)
    logger.info("已加载包集合: %d 个包 (%s)", len(package_set), p)
    return package_set


def load_manifest(path: str | Path) -> Manifest:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"项目清单不存在: {p}")
    data = _read_document(p)
    if not isinstance(data, dict):
        data = {}
    deps = data.get("dependencies") or []
    if not isinstance(deps, list):
        raise ConfigError(f"清单中的 dependencies 必须是列表: {p}")
    compiler = data.get("compiler")
    return Manifest(
        dependencies=[str(d) for d in deps],
        compiler=str(compiler) if compiler is not None else None,
    )


def find_project_root(start: Path | None = None, manifest: str = MANIFEST_FILE) -> Path | None:
    """从 start（默认当前目录）向上查找包含清单文件的目录"""
    here = (start or Path.cwd()).resolve()
    for candidate in (here, *here.parents):
        if (candidate / manifest).is_file():
            return candidate
    return None
