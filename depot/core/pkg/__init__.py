"""包管理核心

- models.py: 数据模型
- loader.py: 包集合 / 清单加载
- resolver.py: 依赖闭包解析
- sources.py: git / archive 获取策略
- cache.py: 本地缓存
- orchestrator.py: 并发获取调度
- flags.py: 编译器参数生成
"""

from depot.core.pkg.cache import LocalCache
from depot.core.pkg.flags import emit, format_package_flags
from depot.core.pkg.models import (
    ArchiveSource,
    GitSource,
    Manifest,
    MaterializedPackage,
    PackageDescriptor,
    PackageSet,
    ResolvedSet,
)
from depot.core.pkg.orchestrator import FetchOrchestrator
from depot.core.pkg.resolver import resolve, topo_sort
from depot.core.pkg.sources import ArchiveFetcher, GitFetcher, PackageFetcher

__all__ = [
    "ArchiveFetcher",
    "ArchiveSource",
    "FetchOrchestrator",
    "GitFetcher",
    "GitSource",
    "LocalCache",
    "Manifest",
    "MaterializedPackage",
    "PackageDescriptor",
    "PackageFetcher",
    "PackageSet",
    "ResolvedSet",
    "emit",
    "format_package_flags",
    "resolve",
    "topo_sort",
]
