"""项目级入口

把包集合、项目清单、本地缓存和获取调度串起来:

    包集合 + 清单 -> resolve -> fetch_all（缓存 + 获取策略）-> emit

用法:
    from depot.core.project import Project

    project = Project.load()
    packages = project.install(force=False)
    flags = project.sources()
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from pathlib import Path

from depot.core.config import Config, get_config
from depot.core.exceptions import ConfigError
from depot.core.pkg.cache import LocalCache
from depot.core.pkg.flags import emit
from depot.core.pkg.loader import find_project_root, load_manifest, load_package_set
from depot.core.pkg.models import Manifest, MaterializedPackage, PackageSet, ResolvedSet
from depot.core.pkg.orchestrator import FetchOrchestrator
from depot.core.pkg.resolver import resolve
from depot.core.pkg.sources import ArchiveFetcher, GitFetcher, PackageFetcher
from depot.utils.yaml_io import save_yaml

logger = logging.getLogger(__name__)


class Project:
    """一个项目的一次调用上下文

    cache 由调用方构造传入；load() 按配置在项目根目录下创建。
    """

    def __init__(
        self,
        package_set: PackageSet,
        manifest: Manifest | None,
        cache: LocalCache,
        fetcher: PackageFetcher | None = None,
        config: Config | None = None,
    ) -> None:
        self.config = config or get_config()
        self.package_set = package_set
        self.manifest = manifest
        self.cache = cache
        self.orchestrator = FetchOrchestrator(
            cache,
            fetcher or build_fetcher(self.config),
            max_workers=self.config.max_workers,
            sources_dir=self.config.sources_dir,
        )

    @classmethod
    def load(
        cls,
        config: Config | None = None,
        package_set_file: str | Path | None = None,
        start: Path | None = None,
        require_manifest: bool = True,
    ) -> Project:
        """从当前目录向上查找项目清单并加载

        require_manifest=False 时找不到清单也可以加载（只操作包集合）。
        """
        cfg = config or get_config()
        root = find_project_root(start, cfg.manifest)
        if root is None:
            if require_manifest:
                raise ConfigError(
                    f"当前目录及其上级目录中没有找到 '{cfg.manifest}'，"
                    "可以先执行 depot init"
                )
            root = (start or Path.cwd()).resolve()
        elif root != (start or Path.cwd()).resolve():
            logger.info("项目根目录: %s", root)

        package_set = load_package_set(root / (package_set_file or cfg.package_set))
        manifest_path = root / cfg.manifest
        manifest = load_manifest(manifest_path) if manifest_path.is_file() else None
        return cls(package_set, manifest, LocalCache(root / cfg.cache_dir), config=cfg)

    def resolve(self) -> ResolvedSet:
        if self.manifest is None:
            raise ConfigError("没有项目清单，无法解析依赖")
        return resolve(self.package_set, self.manifest.dependencies)

    def install(self, force: bool | Collection[str] = False) -> list[MaterializedPackage]:
        """解析并获取全部传递依赖

        force: True 时全部重新获取；包名集合时只重新获取这些包
        """
        resolved = self.resolve()
        logger.info("正在安装 %d 个包", len(resolved))
        packages = self.orchestrator.fetch_all(resolved, force=force)
        stats = self.orchestrator.stats
        logger.info(
            "安装完成: 新获取 %d 个, 缓存命中 %d 个 (%.1f秒)",
            stats.fetched, stats.hits, stats.duration,
        )
        return packages

    def sources(self) -> list[tuple[str, Path]]:
        """安装并返回 (包名, 源码目录) 列表，依赖在前"""
        resolved = self.resolve()
        packages = self.orchestrator.fetch_all(resolved)
        return emit(packages, resolved.order)


def build_fetcher(config: Config) -> PackageFetcher:
    archive = ArchiveFetcher(timeout=config.download_timeout)
    git = GitFetcher(
        timeout=config.git_timeout,
        archive=archive,
        prefer_tarball=config.prefer_tarball,
    )
    return PackageFetcher(git=git, archive=archive)


def init_project(directory: Path, config: Config | None = None) -> list[Path]:
    """生成最小项目配置，已存在的文件不覆盖，返回新建的文件"""
    cfg = config or get_config()
    created: list[Path] = []

    manifest = directory / cfg.manifest
    if not manifest.exists():
        save_yaml(manifest, {"dependencies": [], "compiler": None})
        created.append(manifest)

    package_set = directory / cfg.package_set
    if not package_set.exists():
        save_yaml(package_set, {"packages": []})
        created.append(package_set)

    for path in created:
        logger.info("已创建: %s", path)
    return created
